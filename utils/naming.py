"""Project naming: slugs and deduplicated output directories."""

import os
import re

MAX_DEDUP = 1000

_FILLER = {
    "build", "me", "a", "an", "the", "create", "make", "generate",
    "write", "for", "to", "with", "using", "that", "and", "app",
    "dapp", "smart", "contract", "please", "can", "you", "i", "want",
    "need", "some", "new", "simple", "where", "users",
}


def slugify(text):
    """Lowercase, hyphen-separated, [a-z0-9-] only."""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", text.strip())
    text = re.sub(r"[^\w\s-]", "", text.lower())
    text = re.sub(r"[\s_-]+", "-", text)
    return text.strip("-")


def extract_project_name(request):
    """Pull a short project name from the request text."""
    words = re.sub(r"[^\w\s]", "", request.lower()).split()
    meaningful = [w for w in words if w not in _FILLER]
    return slugify(" ".join(meaningful[:3])) or "project"


def project_name(plan, prompt=""):
    """Prefer the planner's suggestion, then the contract name, then the prompt."""
    for candidate in (plan.suggested_project_name, plan.contract_name):
        slug = slugify(candidate or "")
        if slug:
            return slug
    return extract_project_name(prompt)


def _check_containment(base_dir, path):
    resolved = os.path.realpath(path)
    if not resolved.startswith(os.path.realpath(base_dir) + os.sep):
        raise ValueError(f"Generated output path escapes base directory: {path}")
    return resolved


def get_output_dir(base_dir, name):
    """Return base_dir/name, or base_dir/name-2, -3, ... if it already exists."""
    base = os.path.join(base_dir, name)
    _check_containment(base_dir, base)

    if not os.path.exists(base):
        return base

    for counter in range(2, MAX_DEDUP + 2):
        candidate = f"{base}-{counter}"
        if not os.path.exists(candidate):
            return candidate

    raise RuntimeError(f"Too many duplicate projects (>{MAX_DEDUP}) for: {name}")
