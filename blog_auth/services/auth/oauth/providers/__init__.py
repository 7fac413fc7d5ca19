from .github import GitHubOAuthProvider

__all__ = ["GitHubOAuthProvider"]
