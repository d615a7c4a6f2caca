from __future__ import annotations

import os

import pytest

from n64toolchain import target


def test_vr4300_config_names_the_n64_triple_and_prefix() -> None:
    config = target.get_target_config("vr4300")
    assert config["target_triple"] == "mips64-elf"
    assert config["program_prefix"] == "mips-n64-"
    assert config["binutils_cpu"] == "mips64vr4300"


def test_unknown_cpu_lists_supported_targets() -> None:
    with pytest.raises(ValueError, match="vr4300"):
        target.get_target_config("r4000")


def test_supported_targets() -> None:
    assert target.get_supported_targets() == ["vr4300"]
    assert target.DEFAULT_TARGET in target.get_supported_targets()


def test_flags_join_libgcc_stage() -> None:
    config = target.get_target_config("vr4300")
    assert target.flags(config, "libgcc_cflags") == (
        "-mabi=32 -ffreestanding -mfix4300 -G 0 -fno-stack-protector "
        "-mno-check-zero-division -fwrapv -Os"
    )


def test_final_cxx_flags_disable_rtti_and_exceptions() -> None:
    config = target.get_target_config("vr4300")
    assert target.flags(config, "final_cxxflags") == (
        "-mabi=32 -mfix4300 -G 0 -fno-stack-protector -mno-check-zero-division "
        "-fno-PIC -fno-rtti -Os -fno-exceptions"
    )


def test_tool_path_uses_program_prefix() -> None:
    config = target.get_target_config("vr4300")
    assert target.tool_path("/opt/n64", config, "ranlib") == os.path.join(
        "/opt/n64", "bin", "mips-n64-ranlib"
    )
