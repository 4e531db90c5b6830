# github_app.py
"""GitHub App client used to turn a submission into a pull request."""

import base64
import logging
import re
import time
from typing import Any, Dict, Mapping, Optional

import httpx
import jwt

import submission as sub

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"


class GitHubError(Exception):
    """A GitHub REST call returned a non-success status."""

    def __init__(self, message: str, status_code: int = 0, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GitHubConfigError(GitHubError):
    pass


def format_private_key(key: str) -> str:
    """Normalize a PEM key that was squeezed into an environment variable.

    Hosting dashboards tend to store the key either with literal ``\\n``
    sequences or as a single space separated line.
    """
    if "\n" in key and not key.startswith("-----BEGIN"):
        return key.replace("\\n", "\n")

    match = re.match(r"^(-----BEGIN [A-Z ]+ KEY-----)\s+(.+)\s+(-----END [A-Z ]+ KEY-----)$", key.strip())
    if match:
        header, body, footer = match.groups()
        compact = re.sub(r"\s+", "", body)
        lines = [compact[i:i + 64] for i in range(0, len(compact), 64)]
        return "\n".join([header, *lines, footer])

    return key.replace("\\n", "\n")


def create_app_jwt(app_id: str, private_key: str, now: Optional[float] = None) -> str:
    """Return a short-lived RS256 JWT identifying the GitHub App."""
    issued = int(time.time() if now is None else now)
    payload = {
        # Backdated to tolerate clock drift between us and GitHub
        "iat": issued - 60,
        "exp": issued + 540,
        "iss": str(app_id),
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


def _default_headers(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": API_VERSION,
    }


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    try:
        detail = response.json().get("message", "")
    except ValueError:
        detail = ""
    message = f"GitHub {action} failed ({response.status_code})"
    if detail:
        message += f": {detail}"
    raise GitHubError(message, status_code=response.status_code, body=response.text)


def get_installation_token(
    app_id: str,
    installation_id: int,
    private_key: str,
    api_url: str = DEFAULT_API_URL,
    timeout: float = 30.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    app_jwt = create_app_jwt(app_id, private_key)
    with httpx.Client(base_url=api_url, timeout=httpx.Timeout(timeout), transport=transport) as client:
        response = client.post(
            f"/app/installations/{installation_id}/access_tokens",
            headers=_default_headers(app_jwt),
        )
    _raise_for_status(response, "installation token request")
    return response.json()["token"]


class GitHubClient:
    """Thin wrapper over the git data and pulls endpoints of one repository."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self._client = httpx.Client(
            base_url=api_url,
            headers=_default_headers(token),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, action: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"/repos/{self.owner}/{self.repo}{path}"
        try:
            response = self._client.request(method, url, json=json)
        except httpx.HTTPError as exc:
            raise GitHubError(f"GitHub {action} failed: {exc}") from exc
        _raise_for_status(response, action)
        return response.json()

    def create_blob(self, content: bytes) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/git/blobs",
            "blob creation",
            json={"content": base64.b64encode(content).decode("ascii"), "encoding": "base64"},
        )

    def get_ref(self, ref: str) -> Dict[str, Any]:
        return self._request("GET", f"/git/ref/{ref}", "ref lookup")

    def get_commit(self, sha: str) -> Dict[str, Any]:
        return self._request("GET", f"/git/commits/{sha}", "commit lookup")

    def create_tree(self, base_tree: str, path: str, blob_sha: str) -> Dict[str, Any]:
        entry = {"path": path, "mode": "100644", "type": "blob", "sha": blob_sha}
        return self._request("POST", "/git/trees", "tree creation", json={"base_tree": base_tree, "tree": [entry]})

    def create_commit(self, message: str, tree: str, parents: list) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/git/commits",
            "commit creation",
            json={"message": message, "tree": tree, "parents": parents},
        )

    def create_ref(self, ref: str, sha: str) -> Dict[str, Any]:
        return self._request("POST", "/git/refs", "branch creation", json={"ref": ref, "sha": sha})

    def create_pull(self, title: str, head: str, base: str, body: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/pulls",
            "pull request creation",
            json={"title": title, "head": head, "base": base, "body": body},
        )


def client_from_settings(
    settings: Mapping[str, Any],
    transport: Optional[httpx.BaseTransport] = None,
) -> GitHubClient:
    """Authenticate as the configured App installation and return a client."""
    app_id = settings.get("github_app_id")
    installation_id = settings.get("github_installation_id")
    raw_key = settings.get("github_private_key")
    if not (app_id and installation_id and raw_key):
        raise GitHubConfigError("GitHub App not configured")
    owner = settings.get("repo_owner")
    repo = settings.get("repo_name")
    if not (owner and repo):
        raise GitHubConfigError("GitHub App not configured")

    api_url = settings.get("github_api_url") or DEFAULT_API_URL
    timeout = float(settings.get("github_timeout_seconds", 30.0))
    token = get_installation_token(
        str(app_id),
        int(installation_id),
        format_private_key(raw_key),
        api_url=api_url,
        timeout=timeout,
        transport=transport,
    )
    return GitHubClient(token, owner, repo, api_url=api_url, timeout=timeout, transport=transport)


def open_submission_pr(
    client: GitHubClient,
    submission: Mapping[str, Any],
    base_branch: str = "main",
    now: Optional[float] = None,
) -> Dict[str, str]:
    """Commit the submitted file onto a fresh branch and open a pull request."""
    path = submission["path"]
    logger.info("Creating PR to add %s to %s/%s", path, client.owner, client.repo)

    blob = client.create_blob(submission["content"])
    logger.info("Blob created: %s", blob["sha"])

    base_ref = client.get_ref(f"heads/{base_branch}")
    base_sha = base_ref["object"]["sha"]
    logger.info("%s commit SHA: %s", base_branch, base_sha)

    base_commit = client.get_commit(base_sha)
    tree_sha = base_commit["tree"]["sha"]

    new_tree = client.create_tree(tree_sha, path, blob["sha"])
    logger.info("New tree created: %s", new_tree["sha"])

    new_commit = client.create_commit(sub.commit_message(submission["filename"]), new_tree["sha"], [base_sha])
    logger.info("New commit created: %s", new_commit["sha"])

    branch = sub.branch_name(submission["subfolder"], now)
    client.create_ref(f"refs/heads/{branch}", new_commit["sha"])
    logger.info("Branch created: %s", branch)

    pr = client.create_pull(
        sub.pr_title(submission),
        branch,
        base_branch,
        sub.build_pr_body(path, submission["metadata"]),
    )
    logger.info("PR created: %s", pr["html_url"])

    return {"pr_url": pr["html_url"], "branch": branch, "filename": path}
