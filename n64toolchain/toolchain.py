#!/usr/bin/env python3
# SPDX-License-Identifier: BSD-3-Clause
"""
Cross-compiler toolchain builder for the N64.

Builds binutils, GCC and newlib for the MIPS VR4300 and installs them under
the directory named by U64_INST. The gas and gcc VR4300 patches are applied
to the upstream sources before configuring.
"""

import argparse
import os
import platform
import shutil
import subprocess
import sys
from pathlib import Path

import sh

from n64toolchain.target import (
    DEFAULT_TARGET,
    flags,
    get_supported_targets,
    get_target_config,
    tool_path,
)
from n64toolchain.utility import (
    apply_patch,
    extract_archive,
    fetch_archive,
    get_cpu_count,
    guess_build_triplet,
    link_dependency,
    run_command,
    run_privileged,
    unlink_dependency,
)


# =============================================================================
# Version Configuration
# =============================================================================

VERSIONS = {
    'binutils': '2.45',
    'gcc': '15.2.0',
    'newlib': '4.5.0.20241231',
    'gmp': '6.3.0',
    'mpc': '1.3.1',
    'mpfr': '4.2.2',
}

URLS = {
    'binutils': 'https://ftpmirror.gnu.org/gnu/binutils/binutils-{version}.tar.gz',
    'gcc': 'https://ftpmirror.gnu.org/gnu/gcc/gcc-{version}/gcc-{version}.tar.gz',
    'newlib': 'https://sourceware.org/pub/newlib/newlib-{version}.tar.gz',
    # no .gz tarball is published for gmp
    'gmp': 'https://ftpmirror.gnu.org/gnu/gmp/gmp-{version}.tar.bz2',
    'mpc': 'https://ftpmirror.gnu.org/gnu/mpc/mpc-{version}.tar.gz',
    'mpfr': 'https://ftpmirror.gnu.org/gnu/mpfr/mpfr-{version}.tar.gz',
}

# Libraries built in-tree by GCC when linked into its source directory
GCC_LIBRARIES = ('gmp', 'mpc', 'mpfr')

PATCHES = {
    'binutils': 'gas-vr4300.patch',
    'gcc': 'gcc-vr4300.patch',
}

BINUTILS_BUILD_DIR = 'binutils_compile_target'
GCC_BUILD_DIR = 'gcc_compile_target'
NEWLIB_BUILD_DIR = 'newlib_compile_target'


def detect_os() -> str:
    """Detect host operating system."""
    return platform.system()


# =============================================================================
# Build Classes
# =============================================================================

class ToolchainBuilder:
    """Builds the N64 cross-compilation toolchain."""

    def __init__(self, prefix: str, target_config: dict, jobs: int = None,
                 build_path: str = 'toolchain', download_path: str = None,
                 build: str = None, host: str = None, target: str = None,
                 patch_dir: str = '.', system_libs: bool = False):
        """
        Args:
            prefix: Toolchain installation prefix (U64_INST)
            target_config: Entry from n64toolchain.target.TARGET_CONFIG
            jobs: Number of parallel make jobs
            build_path: Directory holding sources and build trees
            download_path: Directory holding tarballs (default: build_path)
            build: Build triplet (default: guessed by config.guess)
            host: Host triplet (default: build triplet)
            target: Target triplet (default: from target_config)
            patch_dir: Directory containing the VR4300 patch files
            system_libs: Use the system GMP/MPC/MPFR instead of in-tree copies
        """
        self.prefix = Path(prefix).resolve()
        self.config = target_config
        self.target = target or target_config['target_triple']
        self.jobs = jobs or get_cpu_count()
        self.build = build or None
        self.host = host or None
        self.patch_dir = Path(patch_dir)

        self.build_path = Path(build_path)
        self.download_path = Path(download_path or build_path)

        self.versions = dict(VERSIONS)
        if system_libs:
            for lib in GCC_LIBRARIES:
                self.versions[lib] = ''

        self.bin_dir = self.prefix / 'bin'

        # Freshly installed cross tools must be visible to later stages
        self.build_env = {
            'PATH': f"{os.environ.get('PATH', '')}:{self.bin_dir}",
        }

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    def packages(self) -> list:
        """Packages to fetch, skipping those with an empty version."""
        return [pkg for pkg, version in self.versions.items() if version]

    def src_name(self, pkg: str) -> str:
        return f"{pkg}-{self.versions[pkg]}"

    def src_path(self, pkg: str) -> Path:
        return self.build_path / self.src_name(pkg)

    def url(self, pkg: str) -> str:
        return URLS[pkg].format(version=self.versions[pkg])

    def setup_directories(self):
        """Create build/download directories and stage the patch files."""
        self.build_path.mkdir(parents=True, exist_ok=True)
        self.download_path.mkdir(parents=True, exist_ok=True)
        self.build_path = self.build_path.resolve()
        self.download_path = self.download_path.resolve()

        for patch in PATCHES.values():
            shutil.copy(self.patch_dir / patch, self.build_path / patch)

    def fetch_sources(self):
        """Download, extract and patch every package that is not there yet."""
        for pkg in self.packages():
            archive = fetch_archive(self.url(pkg), str(self.download_path))
            src_path = extract_archive(str(archive), str(self.build_path),
                                       self.src_name(pkg))

            if pkg in PATCHES:
                apply_patch(str(src_path), str(self.build_path / PATCHES[pkg]))

            if pkg in GCC_LIBRARIES:
                link_dependency(str(self.src_path('gcc')), pkg,
                                self.src_name(pkg))

        for lib in GCC_LIBRARIES:
            if not self.versions[lib]:
                unlink_dependency(str(self.src_path('gcc')), lib)

    def resolve_triplets(self):
        """Fill in the build and host triplets when not given."""
        if not self.build:
            self.build = guess_build_triplet(str(self.src_path('binutils')))
        if not self.host:
            self.host = self.build

    # -------------------------------------------------------------------------
    # Configure arguments
    # -------------------------------------------------------------------------

    def _triplet_args(self) -> list:
        args = []
        if self.build:
            args.append(f"--build={self.build}")
        if self.host:
            args.append(f"--host={self.host}")
        return args

    def binutils_configure_args(self) -> list:
        return [
            '--disable-debug',
            f"--prefix={self.prefix}",
            f"--target={self.target}",
            f"--with-cpu={self.config['binutils_cpu']}",
            f"--program-prefix={self.config['program_prefix']}",
            '--disable-werror',
        ] + self._triplet_args()

    def gcc_configure_args(self) -> list:
        # We need the C++ compiler to build the target libstdc++ later.
        args = []
        if detect_os() != 'Darwin':
            args.append('--with-system-zlib')

        return args + [
            f"--prefix={self.prefix}",
            f"--target={self.target}",
            f"--program-prefix={self.config['program_prefix']}",
            f"--with-arch={self.config['gcc_arch']}",
            f"--with-tune={self.config['gcc_tune']}",
            f"--enable-languages={self.config['languages']}",
            '--without-headers',
            '--disable-libssp',
            '--disable-multilib',
            '--disable-shared',
            '--with-gcc',
            '--with-newlib',
            '--disable-win32-registry',
            '--disable-nls',
            '--disable-werror',
        ] + self._triplet_args()

    def newlib_configure_args(self) -> list:
        return [
            f"--prefix={self.prefix}",
            f"--target={self.target}",
            f"--with-cpu={self.config['binutils_cpu']}",
            '--disable-libssp',
            '--disable-werror',
            '--enable-newlib-multithread',
            '--enable-newlib-retargetable-locking',
        ] + self._triplet_args()

    def newlib_environment(self) -> dict:
        """Target tools and flags for configuring newlib."""
        prefix = str(self.prefix)
        return {
            'RANLIB_FOR_TARGET': tool_path(prefix, self.config, 'ranlib'),
            'CC_FOR_TARGET': tool_path(prefix, self.config, 'gcc'),
            'CXX_FOR_TARGET': tool_path(prefix, self.config, 'g++'),
            'AR_FOR_TARGET': tool_path(prefix, self.config, 'ar'),
            'CFLAGS_FOR_TARGET': flags(self.config, 'newlib_cflags'),
            'CXXFLAGS_FOR_TARGET': flags(self.config, 'newlib_cxxflags'),
        }

    # -------------------------------------------------------------------------
    # Build steps
    # -------------------------------------------------------------------------

    def _build_dir(self, name: str) -> Path:
        build_dir = self.build_path / name
        build_dir.mkdir(parents=True, exist_ok=True)
        return build_dir

    def _configure(self, pkg: str, build_dir: Path, args: list,
                   env: dict = None):
        run_command(
            [str(self.src_path(pkg) / 'configure')] + args,
            env={**self.build_env, **(env or {})},
            cwd=str(build_dir),
        )

    def _make(self, build_dir: Path, *targets: str, **variables: str):
        run_command(
            ['make', *targets, '-j', str(self.jobs)]
            + [f"{name}={value}" for name, value in variables.items()],
            env=self.build_env,
            cwd=str(build_dir),
        )

    def _install(self, build_dir: Path, target: str,
                 preserve_path: bool = False):
        run_privileged(
            ['make', target],
            cwd=str(build_dir),
            env=self.build_env,
            preserve_path=self.build_env['PATH'] if preserve_path else None,
        )

    @staticmethod
    def _banner(title: str):
        print("\n" + "=" * 60)
        print(title)
        print("=" * 60)

    def build_binutils(self):
        """Build and install binutils."""
        self._banner("Building binutils")
        build_dir = self._build_dir(BINUTILS_BUILD_DIR)

        self._configure('binutils', build_dir, self.binutils_configure_args())
        self._make(build_dir)
        self._install(build_dir, 'install-strip')

    def build_gcc_stage1(self):
        """Build GCC and libgcc without a C library."""
        self._banner("Building GCC Stage 1")
        build_dir = self._build_dir(GCC_BUILD_DIR)

        self._configure('gcc', build_dir, self.gcc_configure_args())
        self._make(build_dir, 'all-gcc')
        self._install(build_dir, 'install-gcc')
        self._make(
            build_dir,
            'all-target-libgcc',
            CFLAGS_FOR_TARGET=flags(self.config, 'libgcc_cflags'),
        )
        self._install(build_dir, 'install-target-libgcc')

    def build_newlib(self):
        """Build and install newlib with the stage 1 compiler."""
        self._banner("Building newlib")
        build_dir = self._build_dir(NEWLIB_BUILD_DIR)

        self._configure('newlib', build_dir, self.newlib_configure_args(),
                        env=self.newlib_environment())
        self._make(build_dir)
        self._install(build_dir, 'install', preserve_path=True)

    def build_gcc_final(self):
        """Finish the target libraries (libstdc++) in the stage 1 build tree."""
        self._banner("Building GCC target libraries")
        build_dir = self._build_dir(GCC_BUILD_DIR)

        self._make(
            build_dir,
            'all',
            CFLAGS_FOR_TARGET=flags(self.config, 'final_cflags'),
            CXXFLAGS_FOR_TARGET=flags(self.config, 'final_cxxflags'),
        )
        self._install(build_dir, 'install-strip')

    def prepare(self):
        """Directories, sources and triplets needed by every stage."""
        self.setup_directories()
        self.fetch_sources()
        self.resolve_triplets()

    def build_all(self):
        """Build the complete toolchain."""
        print(f"Building toolchain for {self.target}")
        print(f"  Prefix: {self.prefix}")
        print(f"  Build path: {self.build_path}")
        print(f"  Download path: {self.download_path}")
        print(f"  Jobs: {self.jobs}")
        print()

        self.prepare()

        self.build_binutils()
        self.build_gcc_stage1()
        self.build_newlib()
        self.build_gcc_final()

        print()
        print("*" * 47)
        print("Toolchain correctly built and installed")
        print(f"Installation directory: \"{self.prefix}\"")
        print(f"Build directory: \"{self.build_path}\" (can be removed now)")

    def clean(self):
        """Remove per-package build directories (keep sources)."""
        print("Cleaning build directories...")
        for name in (BINUTILS_BUILD_DIR, GCC_BUILD_DIR, NEWLIB_BUILD_DIR):
            path = self.build_path / name
            if path.exists():
                shutil.rmtree(path)
                print(f"Removed: {path}")

    def clean_all(self):
        """Remove the build and download directories."""
        print("Cleaning everything...")
        for path in [self.build_path, self.download_path]:
            if path.exists():
                shutil.rmtree(path)
                print(f"Removed: {path}")


# =============================================================================
# Main Entry Point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    env = os.environ
    parser = argparse.ArgumentParser(
        description='Build the N64 MIPS cross-compilation toolchain',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Environment variables (overridden by the matching option):
  U64_INST        installation directory (required)
  BUILD_PATH      build directory (default: toolchain)
  DOWNLOAD_PATH   download directory (default: BUILD_PATH)
  U64_BUILD, U64_HOST, U64_TARGET
                  build/host/target triplets
  JOBS            parallel make jobs (default: CPU count)

Examples:
  U64_INST=/opt/n64 %(prog)s
  %(prog)s --prefix /opt/n64 -j 4
  %(prog)s --prefix /opt/n64 --clean
''',
    )

    parser.add_argument('--prefix', default=env.get('U64_INST') or None,
                        help='Toolchain installation prefix (U64_INST)')
    parser.add_argument('--build-path',
                        default=env.get('BUILD_PATH') or 'toolchain',
                        help='Build directory (BUILD_PATH)')
    parser.add_argument('--download-path',
                        default=env.get('DOWNLOAD_PATH') or None,
                        help='Download directory (DOWNLOAD_PATH)')
    parser.add_argument('--build', default=env.get('U64_BUILD') or None,
                        help='Build triplet (U64_BUILD)')
    parser.add_argument('--host', default=env.get('U64_HOST') or None,
                        help='Host triplet (U64_HOST)')
    parser.add_argument('-t', '--target', default=env.get('U64_TARGET') or None,
                        help='Target triplet (U64_TARGET, default: mips64-elf)')
    parser.add_argument('--cpu', choices=get_supported_targets(),
                        default=DEFAULT_TARGET,
                        help=f'Target CPU (default: {DEFAULT_TARGET})')
    parser.add_argument('-j', '--jobs', type=int,
                        default=env.get('JOBS') or get_cpu_count(),
                        help='Parallel make jobs (JOBS)')
    parser.add_argument('--patch-dir', default='.',
                        help='Directory containing gas-vr4300.patch and '
                             'gcc-vr4300.patch (default: current directory)')
    parser.add_argument('--system-libs', action='store_true',
                        help='Use system GMP/MPC/MPFR instead of building them')
    parser.add_argument('--clean', action='store_true',
                        help='Remove build directories')
    parser.add_argument('--clean-all', action='store_true',
                        help='Remove all build artifacts and downloads')
    parser.add_argument('--binutils-only', action='store_true',
                        help='Build only binutils')
    parser.add_argument('--gcc-stage1-only', action='store_true',
                        help='Build only GCC stage 1')
    parser.add_argument('--newlib-only', action='store_true',
                        help='Build only newlib')
    parser.add_argument('--gcc-final-only', action='store_true',
                        help='Build only the final GCC target libraries')
    return parser


def main(argv: list = None):
    args = build_parser().parse_args(argv)

    if not args.prefix:
        print("U64_INST environment variable is not defined.", file=sys.stderr)
        print("Please define U64_INST and point it to the requested "
              "installation directory", file=sys.stderr)
        sys.exit(1)

    builder = ToolchainBuilder(
        prefix=args.prefix,
        target_config=get_target_config(args.cpu),
        jobs=args.jobs,
        build_path=args.build_path,
        download_path=args.download_path,
        build=args.build,
        host=args.host,
        target=args.target,
        patch_dir=args.patch_dir,
        system_libs=args.system_libs,
    )

    single_stages = [
        (args.binutils_only, builder.build_binutils),
        (args.gcc_stage1_only, builder.build_gcc_stage1),
        (args.newlib_only, builder.build_newlib),
        (args.gcc_final_only, builder.build_gcc_final),
    ]

    try:
        if args.clean_all:
            builder.clean_all()
        elif args.clean:
            builder.clean()
        else:
            stages = [stage for selected, stage in single_stages if selected]
            if stages:
                builder.prepare()
                for stage in stages:
                    stage()
            else:
                builder.build_all()
    except subprocess.CalledProcessError as e:
        print(f"\nError: Command failed with exit code {e.returncode}",
              file=sys.stderr)
        sys.exit(1)
    except sh.ErrorReturnCode as e:
        print(f"\nError: Command failed with exit code {e.exit_code}",
              file=sys.stderr)
        sys.exit(1)
    except (RuntimeError, OSError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nBuild interrupted.")
        sys.exit(130)


if __name__ == '__main__':
    main()
