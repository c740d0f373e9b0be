from host_telemetry.services import container_info


def test_cpu_model_from_container_cpuinfo(tmp_path):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text(
        "processor\t: 0\nvendor_id\t: GenuineIntel\n"
        "model name\t: Intel(R) Xeon(R) CPU E5-2673 v4 @ 2.30GHz\n",
        encoding="utf-8",
    )

    assert container_info.cpu_model(cpuinfo) == "Intel(R) Xeon(R) CPU E5-2673 v4 @ 2.30GHz"


def test_cpu_model_without_model_line_is_unknown(tmp_path):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text("processor\t: 0\nflags\t\t: fpu vme\n", encoding="utf-8")

    assert container_info.cpu_model(cpuinfo) == "Unknown"


def test_cpu_model_unreadable_cpuinfo_is_unknown(tmp_path):
    assert container_info.cpu_model(tmp_path / "missing") == "Unknown"

    garbled = tmp_path / "cpuinfo"
    garbled.write_bytes(b"model name\t: \xff\xfe\n")
    assert container_info.cpu_model(garbled) == "Unknown"
