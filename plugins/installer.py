"""Extension installer.

Clones extension sources with git into a packages directory and keeps
them checked out at the declared ref.

Layout:
    <packages_dir>/
    ├── nvim-treesitter/
    ├── conform.nvim/
    └── friendly-snippets/
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from enum import Enum
from pathlib import Path
from typing import Protocol

from .declaration import ExtensionDeclaration

logger = logging.getLogger(__name__)


class InstallError(Exception):
    """Raised when extension installation or update fails."""

    pass


class InstallOutcome(str, Enum):
    """What an install or update call changed on disk."""

    INSTALLED = "installed"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class Installer(Protocol):
    """Collaborator that puts extension files in place."""

    def install(self, declaration: ExtensionDeclaration) -> InstallOutcome: ...

    def update(self, declaration: ExtensionDeclaration) -> InstallOutcome: ...


class GitInstaller:
    """Install extensions by cloning their git repositories.

    Example:
        >>> installer = GitInstaller(Path("~/.local/share/deferload/pack").expanduser())
        >>> installer.install(ExtensionDeclaration.from_source("stevearc/conform.nvim"))
        <InstallOutcome.INSTALLED: 'installed'>
    """

    DEFAULT_BASE_URL = "https://github.com"

    def __init__(
        self,
        packages_dir: Path,
        base_url: str = DEFAULT_BASE_URL,
        git_executable: str = "git",
        timeout: int = 300,
    ) -> None:
        """Initialize the installer.

        Args:
            packages_dir: Directory holding one checkout per extension
            base_url: Prefix for "user/repo" style sources
            git_executable: Git binary to run
            timeout: Timeout in seconds for each git command
        """
        self.packages_dir = Path(packages_dir)
        self.base_url = base_url.rstrip("/")
        self.git_executable = git_executable
        self.timeout = timeout

    def target_dir(self, declaration: ExtensionDeclaration) -> Path:
        """Installation directory for an extension."""
        return self.packages_dir / declaration.name

    def is_installed(self, declaration: ExtensionDeclaration) -> bool:
        return (self.target_dir(declaration) / ".git").exists()

    def source_url(self, source: str) -> str:
        """Expand a source identifier to a clonable URL."""
        if "://" in source or source.startswith("git@") or Path(source).is_absolute():
            return source
        return f"{self.base_url}/{source}"

    def install(self, declaration: ExtensionDeclaration) -> InstallOutcome:
        """Clone an extension if it is not present yet.

        Raises:
            InstallError: If cloning or checking out fails
        """
        if self.is_installed(declaration):
            return InstallOutcome.UNCHANGED

        target = self.target_dir(declaration)
        if target.exists():
            # Leftover from an interrupted clone
            shutil.rmtree(target)
        self.packages_dir.mkdir(parents=True, exist_ok=True)

        url = self.source_url(declaration.source or declaration.name)
        logger.info("Installing %s from %s", declaration.name, url)
        self._run_git("clone", "--quiet", "--filter=blob:none", url, str(target))

        if declaration.checkout:
            self._run_git("checkout", "--quiet", declaration.checkout, cwd=target)

        return InstallOutcome.INSTALLED

    def update(self, declaration: ExtensionDeclaration) -> InstallOutcome:
        """Fetch and check out the latest state of the declared ref.

        Installs the extension first if it is missing.

        Raises:
            InstallError: If a git command fails
        """
        if not self.is_installed(declaration):
            return self.install(declaration)

        target = self.target_dir(declaration)
        before = self._head(target)

        self._run_git("fetch", "--quiet", "--tags", "origin", cwd=target)
        ref = f"origin/{declaration.checkout}" if declaration.checkout else "origin/HEAD"
        if declaration.checkout and not self._is_remote_branch(target, declaration.checkout):
            ref = declaration.checkout
        self._run_git("checkout", "--quiet", "--detach", ref, cwd=target)

        after = self._head(target)
        if before == after:
            logger.debug("%s is up to date (%s)", declaration.name, after[:8])
            return InstallOutcome.UNCHANGED

        logger.info("Updated %s: %s -> %s", declaration.name, before[:8], after[:8])
        return InstallOutcome.UPDATED

    def uninstall(self, declaration: ExtensionDeclaration) -> bool:
        """Remove an extension checkout.

        Returns:
            True if removed, False if not installed
        """
        target = self.target_dir(declaration)
        if not target.exists():
            return False
        shutil.rmtree(target)
        return True

    def _head(self, repo: Path) -> str:
        return self._run_git("rev-parse", "HEAD", cwd=repo).stdout.strip()

    def _is_remote_branch(self, repo: Path, name: str) -> bool:
        result = self._run_git("rev-parse", "--verify", "--quiet", f"refs/remotes/origin/{name}", cwd=repo, check=False)
        return result.returncode == 0

    def _run_git(self, *args: str, cwd: Path | None = None, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command."""
        try:
            result = subprocess.run(
                [self.git_executable, *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise InstallError(f"git {args[0]} failed: {e}") from e

        if check and result.returncode != 0:
            raise InstallError(f"git {args[0]} failed: {result.stderr.strip()}")
        return result
