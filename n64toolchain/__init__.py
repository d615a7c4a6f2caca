# SPDX-License-Identifier: BSD-3-Clause
"""
N64 MIPS cross-compiler toolchain builder.

This package fetches, patches, builds and installs binutils, GCC and newlib
for the VR4300 CPU, and helps install the host packages the build needs.
"""
