"""Publishers: push an assembled project to GitHub and deploy it on Vercel.

Both return typed result objects instead of raising. HTTP goes through an
httpx.Client that callers (and tests) may inject.
"""

import base64
import random
import re
import string
import time

import httpx
import structlog

from config.defaults import DEFAULTS
from core.state import GitHubRepoResult, VercelDeploymentResult
from utils.http import HttpClientOwner

logger = structlog.get_logger(__name__)

_REPO_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")
_BASE36 = string.digits + string.ascii_lowercase

MAX_NAME_RETRIES = 3


def _base36(n):
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
    return out or "0"


def generate_repo_name(contract_name, now_ms=None):
    """MyToken -> my-token-dapp-<base36 timestamp>"""
    base = re.sub(r"([A-Z])", r"-\1", contract_name).lower().lstrip("-")
    base = re.sub(r"[^a-z0-9-]", "-", base)
    stamp = _base36(now_ms if now_ms is not None else int(time.time() * 1000))
    return f"{base}-dapp-{stamp}"


def generate_project_name(base_name):
    """Vercel project names: lowercase, [a-z0-9-], no edge dashes, at most 50 chars."""
    name = re.sub(r"[^a-z0-9-]", "-", base_name.lower())
    name = re.sub(r"-+", "-", name).strip("-")
    return name[:50]


def parse_repo_url(repo_url):
    """Return (owner, repo) or None."""
    match = _REPO_URL_RE.search(repo_url or "")
    return (match.group(1), match.group(2)) if match else None


def _auth_headers(token):
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
    }


class GitHubPublisher(HttpClientOwner):
    """Creates a repository and commits files through the git data API."""

    name = "github"

    def __init__(self, client=None, api=None, sleep=time.sleep, settle_seconds=2.0):
        self.client = self._init_client(client)
        self.api = (api or DEFAULTS["github_api"]).rstrip("/")
        self.sleep = sleep
        self.settle_seconds = settle_seconds

    def create_repo_and_push(self, token, repo_name, description, files) -> GitHubRepoResult:
        """Create a public repo and push `files` as one commit on main.

        A taken name (422) is retried with a random suffix up to
        MAX_NAME_RETRIES times.
        """
        headers = _auth_headers(token)
        try:
            user = self.client.get(f"{self.api}/user", headers=headers)
            if user.status_code == 401:
                return GitHubRepoResult(False, error="GitHub authentication failed.", error_code="AUTH_FAILED")
            if user.status_code == 403:
                return GitHubRepoResult(False, error="GitHub access denied.", error_code="ACCESS_DENIED")
            user.raise_for_status()
            owner = user.json()["login"]

            name = repo_name
            for attempt in range(MAX_NAME_RETRIES + 1):
                created = self.client.post(
                    f"{self.api}/user/repos",
                    headers=headers,
                    json={"name": name, "description": description, "private": False, "auto_init": True},
                )
                if created.status_code != 422:
                    break
                if attempt == MAX_NAME_RETRIES:
                    return GitHubRepoResult(
                        False,
                        error=f'Repository name "{name}" is not available.',
                        error_code="NAME_TAKEN",
                    )
                suffix = "".join(random.choices(_BASE36, k=4))
                logger.info("github_repo_name_taken", name=name, retry=attempt + 1)
                name = f"{repo_name}-{suffix}"

            if created.status_code == 403:
                return GitHubRepoResult(False, error="GitHub access denied.", error_code="ACCESS_DENIED")
            created.raise_for_status()
            repo = created.json()

            # auto_init commit needs a moment before refs/heads/main exists
            self.sleep(self.settle_seconds)

            self._commit_files(headers, owner, repo["name"], files, "Initial commit from AI dApp Builder")
            logger.info("github_repo_created", repo=repo["name"], files=len(files))
            return GitHubRepoResult(True, repo_url=repo["html_url"], repo_name=repo["name"])
        except httpx.HTTPStatusError as e:
            return self._status_error(e)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("github_publish_failed", error=str(e))
            return GitHubRepoResult(False, error=str(e) or "Failed to create repository", error_code="UNKNOWN")

    def update_repo_files(self, token, repo_url, files,
                          commit_message="Update from AI dApp Builder") -> GitHubRepoResult:
        parsed = parse_repo_url(repo_url)
        if parsed is None:
            return GitHubRepoResult(False, error="Invalid GitHub repository URL", error_code="INVALID_URL")
        owner, repo_name = parsed
        try:
            self._commit_files(_auth_headers(token), owner, repo_name, files, commit_message)
            return GitHubRepoResult(True, repo_url=repo_url, repo_name=repo_name)
        except httpx.HTTPStatusError as e:
            return self._status_error(e)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("github_update_failed", error=str(e))
            return GitHubRepoResult(False, error=str(e) or "Failed to update repository", error_code="UNKNOWN")

    def _status_error(self, e):
        status = e.response.status_code
        logger.warning("github_api_error", status=status, url=str(e.request.url))
        return GitHubRepoResult(False, error=f"GitHub error ({status}): {e.response.text[:200]}",
                                error_code="GITHUB_ERROR")

    def _commit_files(self, headers, owner, repo, files, message):
        """blobs -> tree on top of main -> commit -> move main."""
        base = f"{self.api}/repos/{owner}/{repo}/git"

        ref = self._request("GET", f"{base}/ref/heads/main", headers)
        head_sha = ref["object"]["sha"]
        head_commit = self._request("GET", f"{base}/commits/{head_sha}", headers)

        tree = []
        for f in files:
            blob = self._request("POST", f"{base}/blobs", headers, {
                "content": base64.b64encode(f.content.encode()).decode(),
                "encoding": "base64",
            })
            tree.append({"path": f.path, "mode": "100644", "type": "blob", "sha": blob["sha"]})

        new_tree = self._request("POST", f"{base}/trees", headers, {
            "base_tree": head_commit["tree"]["sha"],
            "tree": tree,
        })
        commit = self._request("POST", f"{base}/commits", headers, {
            "message": message,
            "tree": new_tree["sha"],
            "parents": [head_sha],
        })
        self._request("PATCH", f"{base}/refs/heads/main", headers, {"sha": commit["sha"]})

    def _request(self, method, url, headers, payload=None):
        response = self.client.request(method, url, headers=headers, json=payload)
        response.raise_for_status()
        return response.json()


class VercelError(Exception):
    pass


class VercelPublisher(HttpClientOwner):
    """Creates (or reuses) a Vercel project linked to a GitHub repo and waits for the deployment."""

    name = "vercel"

    def __init__(self, client=None, api=None, sleep=time.sleep, clock=time.monotonic,
                 wait_timeout=None, poll_seconds=3.0, retry_seconds=5.0):
        self.client = self._init_client(client)
        self.api = (api or DEFAULTS["vercel_api"]).rstrip("/")
        self.sleep = sleep
        self.clock = clock
        self.wait_timeout = wait_timeout or DEFAULTS["vercel_wait_timeout"]
        self.poll_seconds = poll_seconds
        self.retry_seconds = retry_seconds

    def deploy(self, token, github_repo_url, project_name) -> VercelDeploymentResult:
        headers = {"Authorization": f"Bearer {token}"}
        try:
            parsed = parse_repo_url(github_repo_url)
            if parsed is None:
                raise VercelError("Invalid GitHub repository URL")
            repo_full_name = "/".join(parsed)

            existing = self.client.get(f"{self.api}/v9/projects/{project_name}", headers=headers)
            if existing.is_success:
                return self._redeploy(headers, existing.json(), project_name)
            return self._create(headers, repo_full_name, project_name)
        except (VercelError, httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("vercel_deploy_failed", project=project_name, error=str(e))
            return VercelDeploymentResult(False, error=str(e) or "Failed to deploy to Vercel")

    def _redeploy(self, headers, project, project_name):
        project_id = project["id"]
        repo_id = (project.get("link") or {}).get("repoId")
        if repo_id:
            response = self.client.post(f"{self.api}/v13/deployments", headers=headers, json={
                "name": project_name,
                "project": project_id,
                "target": "production",
                "gitSource": {"type": "github", "repoId": repo_id, "ref": "main"},
            })
            if response.is_success:
                deployment = response.json()
                url = self._url_or_default(headers, deployment, project_name)
                return VercelDeploymentResult(True, deployment_url=url, project_id=project_id)

        return VercelDeploymentResult(
            False,
            error="Could not trigger deployment on existing project",
            project_id=project_id,
        )

    def _create(self, headers, repo_full_name, project_name):
        last_error = ""
        for attempt in range(3):
            if attempt:
                self.sleep(self.retry_seconds)

            response = self.client.post(f"{self.api}/v9/projects", headers=headers, json={
                "name": project_name,
                "framework": "nextjs",
                "gitRepository": {"type": "github", "repo": repo_full_name},
                "rootDirectory": "packages/nextjs",
                "buildCommand": "yarn build",
                "installCommand": "yarn install",
            })
            if response.is_success:
                project = response.json()
                # Give the GitHub integration time to start the first build
                self.sleep(self.poll_seconds)
                latest = self._latest_deployment(headers, project["id"])
                if latest is None:
                    url = f"https://{project['name']}.vercel.app"
                else:
                    url = self._url_or_default(headers, latest, project["name"])
                logger.info("vercel_project_created", project=project["name"])
                return VercelDeploymentResult(True, deployment_url=url, project_id=project["id"])

            last_error = (response.json().get("error") or {}).get("message") or "Failed to create Vercel project"
            # A freshly created repo may not be visible to Vercel yet; anything else is final
            lowered = last_error.lower()
            if "repository" not in lowered and "not found" not in lowered:
                break

        raise VercelError(last_error or "Failed to create Vercel project after retries")

    def _latest_deployment(self, headers, project_id):
        response = self.client.get(
            f"{self.api}/v6/deployments",
            headers=headers,
            params={"projectId": project_id, "limit": 1},
        )
        if not response.is_success:
            return None
        deployments = response.json().get("deployments") or []
        return deployments[0] if deployments else None

    def _url_or_default(self, headers, deployment, project_name):
        try:
            return self.wait_for_deployment(headers, deployment.get("uid") or deployment["id"])
        except (VercelError, httpx.HTTPError) as e:
            logger.info("vercel_wait_gave_up", project=project_name, error=str(e))
            return f"https://{project_name}.vercel.app"

    def wait_for_deployment(self, headers, deployment_id):
        """Poll until READY. Raises VercelError on ERROR/CANCELED."""
        url = f"{self.api}/v13/deployments/{deployment_id}"
        deadline = self.clock() + self.wait_timeout
        while True:
            response = self.client.get(url, headers=headers)
            if not response.is_success:
                raise VercelError("Failed to check deployment status")
            deployment = response.json()
            state = deployment.get("readyState")
            if state == "READY":
                return f"https://{deployment['url']}"
            if state in ("ERROR", "CANCELED"):
                raise VercelError(f"Deployment {state.lower()}")
            if self.clock() >= deadline:
                return f"https://{deployment['url']}"
            self.sleep(self.poll_seconds)
