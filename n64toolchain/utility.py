# SPDX-License-Identifier: BSD-3-Clause
"""
Utility functions for the N64 toolchain builder.

Command execution, source fetching and the install privilege fallback.
"""

import multiprocessing
import os
import shlex
import shutil
import subprocess
import tarfile
from pathlib import Path

import sh


# Downloaders in order of preference
DOWNLOADERS = [
    ['aria2c', '-c', '-s', '16', '-x', '16'],
    ['wget', '-c'],
    ['curl', '-LO'],
]


def command_exists(name: str) -> bool:
    """Check if a command-line tool is available on PATH."""
    return shutil.which(name) is not None


def get_cpu_count() -> int:
    """Get number of CPUs for parallel builds."""
    try:
        return multiprocessing.cpu_count() or 1
    except NotImplementedError:
        return 1


def run_command(cmd: list, env: dict = None, cwd: str = None,
                check: bool = True) -> subprocess.CompletedProcess:
    """Run a command with logging."""
    print(f"  $ {' '.join(str(c) for c in cmd)}")
    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)

    return subprocess.run([str(c) for c in cmd], env=merged_env,
                          cwd=None if cwd is None else str(cwd), check=check)


def select_downloader() -> list:
    """Return the argv prefix of the first installed downloader."""
    for downloader in DOWNLOADERS:
        if command_exists(downloader[0]):
            return list(downloader)
    raise RuntimeError("Install wget or curl to download toolchain sources")


def download(url: str, download_dir: str):
    """Download a URL into download_dir with whichever tool is installed."""
    print(f"Downloading: {url}")
    run_command(select_downloader() + [url], cwd=download_dir)


def fetch_archive(url: str, download_dir: str) -> Path:
    """Download url unless its file is already in download_dir."""
    archive = Path(download_dir) / url.split('/')[-1]
    if archive.exists():
        print(f"Already downloaded: {archive.name}")
    else:
        download(url, download_dir)
    return archive


def extract_archive(archive: str, dest_dir: str, src_name: str) -> Path:
    """Extract a tar archive unless dest_dir/src_name already exists."""
    src_path = Path(dest_dir) / src_name
    if src_path.exists():
        print(f"Already extracted: {src_name}")
        return src_path

    print(f"Extracting: {archive}")
    try:
        with tarfile.open(archive) as tar:
            tar.extractall(dest_dir)
    except (tarfile.TarError, EOFError) as e:
        # A half-extracted tree would be skipped on the next run
        if src_path.exists():
            shutil.rmtree(src_path)
        raise RuntimeError(f"Cannot extract {archive}: {e}") from e
    return src_path


def apply_patch(src_dir: str, patch_file: str):
    """Apply a -p1 patch inside src_dir, once per source tree."""
    patch_file = Path(patch_file)
    marker = Path(src_dir) / f".applied-{patch_file.name}"
    if marker.exists():
        print(f"Already patched: {patch_file.name}")
        return

    print(f"Patching: {src_dir} with {patch_file.name}")
    run_command(['patch', '-p1', '-i', str(patch_file)], cwd=src_dir)
    marker.touch()


def link_dependency(gcc_src: str, name: str, dep_dirname: str) -> Path:
    """Point gcc_src/name at ../dep_dirname, replacing any previous link."""
    link = Path(gcc_src) / name
    if link.is_symlink() or link.is_file():
        link.unlink()
    elif link.exists():
        raise RuntimeError(f"{link} exists and is not a symlink")

    os.symlink(os.path.join('..', dep_dirname), link)
    return link


def unlink_dependency(gcc_src: str, name: str) -> bool:
    """Remove a gcc_src/name link left by an earlier in-tree build."""
    link = Path(gcc_src) / name
    if not link.is_symlink():
        return False

    print(f"Removing in-tree {name} link: {link}")
    link.unlink()
    return True


def guess_build_triplet(src_dir: str) -> str:
    """Ask a package's config.guess for the triplet of this machine."""
    config_guess = sh.Command(str(Path(src_dir) / 'config.guess'))
    return str(config_guess()).strip()


# =============================================================================
# Privileged install
# =============================================================================

def escalation_commands(cmd: list, preserve_path: str = None) -> list:
    """Build the direct, sudo and su variants of an install command.

    Args:
        cmd: Command to run, e.g. ['make', 'install-strip']
        preserve_path: PATH to pass through to the privileged variants

    Returns:
        List of three argv lists, tried in order
    """
    privileged = list(cmd)
    if preserve_path is not None:
        privileged = ['env', f'PATH={preserve_path}'] + privileged

    return [
        list(cmd),
        ['sudo'] + privileged,
        ['su', '-c', shlex.join(privileged)],
    ]


def _run_foreground(argv: list, cwd: str, env: dict):
    print(f"  $ {' '.join(argv)}")
    command = sh.Command(argv[0])
    command(*argv[1:], _cwd=str(cwd), _env=env, _fg=True)


def run_privileged(cmd: list, cwd: str, env: dict = None,
                   preserve_path: str = None):
    """Run an install step directly, then via sudo, then via su.

    Raises:
        RuntimeError: if every strategy failed
    """
    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)

    for argv in escalation_commands(cmd, preserve_path):
        try:
            _run_foreground(argv, cwd, merged_env)
            return argv
        except sh.CommandNotFound:
            print(f"  {argv[0]} not available, trying next strategy")
        except sh.ErrorReturnCode as e:
            print(f"  {argv[0]} failed with exit code {e.exit_code}, "
                  "trying next strategy")

    raise RuntimeError(f"Install step failed: {' '.join(cmd)}")
