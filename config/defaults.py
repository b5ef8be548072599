"""Default pipeline settings."""

import os

DEFAULTS = {
    # LLM
    "model": "claude-sonnet-4-20250514",
    "max_tokens": 8192,
    "analyze_max_tokens": 2048,

    # Build budget
    "max_iterations": 10,
    "build_timeout_ms": 5 * 60 * 1000,
    "max_compilation_attempts": 3,
    "max_security_attempts": 3,
    "max_test_attempts": 5,

    # Toolchain
    "solc_binary": os.environ.get("DAPPSMITH_SOLC", "solc"),
    "solc_version": "0.8.20",
    "solc_timeout": 60,
    "optimizer_runs": 200,
    "forge_binary": os.environ.get("DAPPSMITH_FORGE", "forge"),
    "forge_install_timeout": 60,
    "forge_test_timeout": 120,
    "forge_libs_dir": os.environ.get("DAPPSMITH_FORGE_LIBS", ""),
    "sandbox_timeout": 30,
    "allowed_commands": ["solc", "forge", "git"],

    # Third-party sources
    "openzeppelin_version": "5.0.0",
    "import_cdn": "https://unpkg.com",
    "import_cache_size": 512,
    "se2_docs_url": "https://docs.scaffoldeth.io/llms-full.txt",

    # Publishing
    "github_api": "https://api.github.com",
    "vercel_api": "https://api.vercel.com",
    "http_timeout": 30.0,
    "vercel_wait_timeout": 180,

    "log_level": os.environ.get("DAPPSMITH_LOG_LEVEL", "INFO"),
}
