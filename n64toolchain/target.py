# SPDX-License-Identifier: BSD-3-Clause
"""
Target configuration for the N64 toolchain builder.

This module defines CPU-specific settings including:
- Target triple and installed program prefix
- CPU/arch/tune values passed to configure
- Target compiler flags for each build stage
"""

import os

# Target configurations
TARGET_CONFIG = {
    'vr4300': {
        'target_triple': 'mips64-elf',
        'program_prefix': 'mips-n64-',
        'binutils_cpu': 'mips64vr4300',
        'gcc_arch': 'vr4300',
        'gcc_tune': 'vr4300',
        'languages': 'c,c++',
        'libgcc_cflags': [
            '-mabi=32', '-ffreestanding', '-mfix4300', '-G', '0',
            '-fno-stack-protector', '-mno-check-zero-division',
            '-fwrapv', '-Os',
        ],
        'newlib_cflags': [
            '-mabi=32', '-ffreestanding', '-mfix4300', '-G', '0',
            '-fno-stack-protector', '-mno-check-zero-division',
            '-fno-PIC', '-fwrapv', '-Os', '-DHAVE_ASSERT_FUNC',
            '-fpermissive',
        ],
        'newlib_cxxflags': [
            '-mabi=32', '-ffreestanding', '-mfix4300', '-G', '0',
            '-fno-stack-protector', '-mno-check-zero-division',
            '-fno-PIC', '-fwrapv', '-fno-rtti', '-Os', '-fno-exceptions',
            '-DHAVE_ASSERT_FUNC', '-fpermissive',
        ],
        'final_cflags': [
            '-mabi=32', '-mfix4300', '-G', '0', '-fno-PIC', '-fwrapv',
            '-fno-stack-protector', '-mno-check-zero-division', '-Os',
        ],
        'final_cxxflags': [
            '-mabi=32', '-mfix4300', '-G', '0', '-fno-stack-protector',
            '-mno-check-zero-division', '-fno-PIC', '-fno-rtti', '-Os',
            '-fno-exceptions',
        ],
    },
}

DEFAULT_TARGET = 'vr4300'


def get_target_config(cpu: str) -> dict:
    """Get target configuration by CPU name."""
    if cpu not in TARGET_CONFIG:
        raise ValueError(f"Unsupported target CPU: {cpu}. "
                         f"Supported: {list(TARGET_CONFIG.keys())}")
    return TARGET_CONFIG[cpu]


def get_supported_targets() -> list:
    """Get list of supported target CPUs."""
    return list(TARGET_CONFIG.keys())


def flags(config: dict, key: str) -> str:
    """Join a flag list into a single *FLAGS_FOR_TARGET value."""
    return ' '.join(config[key])


def tool_path(install_dir: str, config: dict, tool: str) -> str:
    """Path of an installed cross tool, e.g. <prefix>/bin/mips-n64-gcc."""
    return os.path.join(install_dir, 'bin', f"{config['program_prefix']}{tool}")
