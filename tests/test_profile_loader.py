from __future__ import annotations

import pytest

from nmctl.core.errors import ProfileLoadError, ProfileValidationError
from nmctl.core.model import ConnProfile
from nmctl.core.nmp import MgmtProto
from nmctl.core.profile_loader import delete_profile, load_profiles, save_profile


def test_no_profile_directory_yields_nothing(profile_home) -> None:
    loaded = load_profiles()
    assert loaded.profiles == {}
    assert loaded.warnings == ()


def test_udp_profile_loads_with_defaults(write_profile) -> None:
    write_profile(
        "sim.yaml",
        """
name: sim
type: udp
address: 127.0.0.1
""",
    )

    profile = load_profiles().profiles["sim"]
    assert profile == ConnProfile(name="sim", type="udp", address="127.0.0.1")
    assert profile.mgmt_proto is MgmtProto.NMP
    assert profile.tx_options.timeout_s == 10.0
    assert profile.tx_options.tries == 1


def test_ble_profile_loads(write_profile) -> None:
    write_profile(
        "board.yml",
        """
name: board
type: ble
address: "aa:bb:cc:dd:ee:ff"
mtu: 244
mgmt_proto: smp2
timeout_s: 2.5
tries: 3
""",
    )

    profile = load_profiles().profiles["board"]
    assert profile.address == "AA:BB:CC:DD:EE:FF"
    assert profile.mtu == 244
    assert profile.port is None
    assert profile.mgmt_proto is MgmtProto.SMP2
    assert profile.timeout_s == 2.5
    assert profile.tries == 3


def test_ble_profile_accepts_platform_uuid(write_profile) -> None:
    write_profile(
        "mac.yaml",
        """
name: mac
type: ble
address: 0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0
""",
    )

    assert load_profiles().profiles["mac"].address == "0F1E2D3C-4B5A-6978-8796-A5B4C3D2E1F0"


def test_invalid_ble_address_rejected(write_profile) -> None:
    write_profile(
        "bad.yaml",
        """
name: bad
type: ble
address: not-a-mac
""",
    )

    with pytest.raises(ProfileValidationError):
        load_profiles()


def test_missing_required_keys_rejected(write_profile) -> None:
    write_profile(
        "missing.yaml",
        """
name: missing
type: udp
""",
    )

    with pytest.raises(ProfileValidationError) as exc:
        load_profiles()
    assert "address" in str(exc.value)


@pytest.mark.parametrize(
    "extra",
    [
        "mgmt_proto: coap",
        "mtu: 8",
        "tries: 0",
        "timeout_s: 0",
        "port: 70000",
        "colour: blue",
    ],
)
def test_out_of_range_fields_rejected(write_profile, extra: str) -> None:
    write_profile("bad.yaml", f"name: bad\ntype: udp\naddress: 10.0.0.2\n{extra}\n")

    with pytest.raises(ProfileValidationError):
        load_profiles()


def test_ble_profile_with_port_rejected(write_profile) -> None:
    write_profile(
        "ble_port.yaml",
        """
name: ble_port
type: ble
address: AA:BB:CC:DD:EE:FF
port: 1337
""",
    )

    with pytest.raises(ProfileValidationError):
        load_profiles()


def test_duplicate_yaml_keys_rejected(write_profile) -> None:
    write_profile(
        "dup.yaml",
        """
name: dup
type: udp
address: 10.0.0.2
address: 10.0.0.3
""",
    )

    with pytest.raises(ProfileValidationError):
        load_profiles()


def test_non_mapping_document_rejected(write_profile) -> None:
    write_profile("list.yaml", "- name: a\n- name: b\n")

    with pytest.raises(ProfileValidationError):
        load_profiles()


def test_later_file_overrides_earlier_profile(write_profile) -> None:
    write_profile("a.yaml", "name: dev\ntype: udp\naddress: 10.0.0.1\n")
    write_profile("b.yaml", "name: dev\ntype: udp\naddress: 10.0.0.9\nport: 1500\n")

    loaded = load_profiles()
    assert loaded.profiles["dev"].address == "10.0.0.9"
    assert loaded.profiles["dev"].port == 1500
    assert any("overrides" in warning for warning in loaded.warnings)


def test_non_yaml_files_ignored(write_profile) -> None:
    write_profile("notes.txt", "not a profile")
    write_profile("sim.yaml", "name: sim\ntype: udp\naddress: localhost\n")

    assert set(load_profiles().profiles) == {"sim"}


def test_save_then_load_and_delete(profile_home) -> None:
    profile = ConnProfile(
        name="lab",
        type="udp",
        address="192.168.1.20",
        port=1400,
        mtu=512,
        mgmt_proto=MgmtProto.SMP2,
        timeout_s=3.0,
        tries=2,
    )

    path = save_profile(profile)

    assert path == profile_home / "lab.yaml"
    assert load_profiles().profiles["lab"] == profile
    assert delete_profile("lab") is True
    assert delete_profile("lab") is False
    assert load_profiles().profiles == {}


def test_save_rejects_invalid_profile(profile_home) -> None:
    with pytest.raises(ProfileValidationError):
        save_profile(ConnProfile(name="bad name", type="udp", address="10.0.0.1"))
    assert not (profile_home / "bad name.yaml").exists()


def test_delete_finds_profile_by_name_not_filename(write_profile) -> None:
    write_profile("board.yaml", "name: dev\ntype: udp\naddress: 10.0.0.1\n")
    write_profile("other.yaml", "name: sim\ntype: udp\naddress: localhost\n")

    assert delete_profile("dev") is True
    assert delete_profile("board") is False
    assert set(load_profiles().profiles) == {"sim"}


def test_save_replaces_file_that_defines_profile(write_profile, profile_home) -> None:
    write_profile("zz-board.yaml", "name: dev\ntype: udp\naddress: 10.0.0.1\n")

    path = save_profile(ConnProfile(name="dev", type="udp", address="10.0.0.2"))

    loaded = load_profiles()
    assert path == profile_home / "zz-board.yaml"
    assert not (profile_home / "dev.yaml").exists()
    assert loaded.profiles["dev"].address == "10.0.0.2"
    assert loaded.warnings == ()


def test_save_collapses_duplicate_definitions(write_profile, profile_home) -> None:
    write_profile("a.yaml", "name: dev\ntype: udp\naddress: 10.0.0.1\n")
    write_profile("b.yaml", "name: dev\ntype: udp\naddress: 10.0.0.9\n")

    path = save_profile(ConnProfile(name="dev", type="udp", address="10.0.0.3"))

    loaded = load_profiles()
    assert path == profile_home / "b.yaml"
    assert not (profile_home / "a.yaml").exists()
    assert loaded.profiles["dev"].address == "10.0.0.3"
    assert loaded.warnings == ()


def test_save_refuses_to_clobber_other_profile(write_profile) -> None:
    write_profile("dev.yaml", "name: sim\ntype: udp\naddress: localhost\n")

    with pytest.raises(ProfileLoadError):
        save_profile(ConnProfile(name="dev", type="udp", address="10.0.0.2"))
    assert load_profiles().profiles["sim"].address == "localhost"
