"""Scope keys that alert rules attach to."""

from typing import List

REPO_PREFIX = "repo:"
ORG_PREFIX = "org:"


def resolve_scopes(repo_key: str) -> List[str]:
    """Scopes whose rules apply to a repository.

    Args:
        repo_key: Repository key, "owner/name"

    Returns:
        ``repo:<repo_key>`` followed by ``org:<owner>`` when the owner segment
        is non-empty, without duplicates

    Example:
        >>> resolve_scopes("acme/api")
        ['repo:acme/api', 'org:acme']
        >>> resolve_scopes("/api")
        ['repo:/api']
    """
    scopes = [f"{REPO_PREFIX}{repo_key}"]
    owner = repo_key.split("/", 1)[0]
    if owner:
        org_scope = f"{ORG_PREFIX}{owner}"
        if org_scope not in scopes:
            scopes.append(org_scope)
    return scopes
