"""Tests for the command-line entry points (no serial port needed)."""

from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from drawbot.hardware.transport import DataReceived, Transport
from drawbot.scripts import convert, send_job

RECT_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 100 100">'
    '<rect x="10" y="10" width="20" height="30"/></svg>'
)


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the scripts from reconfiguring the root logger under pytest."""
    for module in (convert, send_job):
        monkeypatch.setattr(module, "setup_logging", lambda *a, **kw: {})
        monkeypatch.setattr(module, "install_excepthook", lambda: None)
    monkeypatch.setattr(send_job, "shutdown", lambda: None)
    monkeypatch.setattr(send_job, "push_context", lambda **kw: None)


class AckingTransport(Transport):
    """Stands in for the serial port; answers every line with ``ok``."""

    opened: list[AckingTransport] = []

    def __init__(self, port: str, **kwargs: object) -> None:
        super().__init__()
        self.port = port
        self.sent: list[str] = []
        self.connected = False
        AckingTransport.opened.append(self)

    @property
    def is_connected(self) -> bool:
        return self.connected

    def connect(self, device: str | None = None) -> None:
        self.connected = True

    def send(self, line: str) -> None:
        self.sent.append(line)
        self.post(DataReceived("ok"))

    def disconnect(self) -> None:
        self.connected = False


@pytest.fixture()
def acking_port(monkeypatch: pytest.MonkeyPatch) -> list[AckingTransport]:
    AckingTransport.opened = []
    monkeypatch.setattr(send_job, "SerialTransport", AckingTransport)
    return AckingTransport.opened


@pytest.fixture()
def image_path(tmp_path: Path) -> Path:
    img = Image.new("RGB", (16, 16), (255, 255, 255))
    for x in range(4, 12):
        img.putpixel((x, 8), (0, 0, 0))
    path = tmp_path / "line.png"
    img.save(path)
    return path


class TestConvertScript:
    def test_writes_output(self, image_path: Path, tmp_path: Path) -> None:
        out = tmp_path / "line.gcode"
        assert convert.main([str(image_path), "-o", str(out), "--mode", "vector-trace"]) == 0
        text = out.read_text()
        assert text.startswith("; DrawBot G-code\n")
        assert "; Mode: vector_trace" in text

    def test_svg_input(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        svg = tmp_path / "rect.svg"
        svg.write_text(RECT_SVG, encoding="utf-8")
        assert convert.main([str(svg), "--width", "100", "--height", "100"]) == 0
        assert "G1 X30.000 Y90.000 F800" in capsys.readouterr().out

    def test_dry_run_writes_nothing(self, image_path: Path, tmp_path: Path) -> None:
        out = tmp_path / "never.gcode"
        assert convert.main([str(image_path), "-o", str(out), "--dry-run"]) == 0
        assert not out.exists()

    def test_bad_input(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"not an image")
        assert convert.main([str(bad)]) == 1
        assert "Conversion failed" in capsys.readouterr().out

    def test_malformed_setting_falls_back(self, image_path: Path, tmp_path: Path) -> None:
        out = tmp_path / "line.gcode"
        assert convert.main([str(image_path), "-o", str(out), "--feed", "fast"]) == 0
        assert " F800" in out.read_text()


class TestSendJobScript:
    def test_calibrate_dry_run(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert send_job.main(["--calibrate", "--dry-run"]) == 0
        out = capsys.readouterr().out
        assert "$100=65.0" in out
        assert "$122=10.0" in out

    def test_gcode_file_dry_run(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        job = tmp_path / "job.gcode"
        job.write_text("G21\nG1 X1 Y1 F800\n", encoding="utf-8")
        assert send_job.main([str(job), "--dry-run"]) == 0
        assert "Program contains 2 lines" in capsys.readouterr().out

    def test_image_dry_run(self, image_path: Path) -> None:
        assert send_job.main([str(image_path), "--mode", "stippling", "--dry-run"]) == 0

    def test_requires_input(self) -> None:
        with pytest.raises(SystemExit):
            send_job.main([])

    def test_unopenable_port(self, tmp_path: Path) -> None:
        job = tmp_path / "job.gcode"
        job.write_text("G1 X1\n", encoding="utf-8")
        missing = str(tmp_path / "no-such-tty")
        assert send_job.main([str(job), "--port", missing]) == 1

    def test_input_and_service_option_rejected(self, tmp_path: Path) -> None:
        job = tmp_path / "job.gcode"
        job.write_text("G1 X1\n", encoding="utf-8")
        with pytest.raises(SystemExit):
            send_job.main([str(job), "--home"])

    def test_service_options_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            send_job.main(["--home", "--test-circle"])

    def test_home_dry_run(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert send_job.main(["--home", "--dry-run"]) == 0
        out = capsys.readouterr().out
        assert "G0 Z5.00" in out
        assert "G0 X0.000 Y0.000" in out

    def test_circle_dry_run(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert send_job.main(["--test-circle", "--dry-run"]) == 0
        assert "G02 X35.000 Y20.000 I-15.000 J0.000 F800" in capsys.readouterr().out

    def test_connection_check_dry_run(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert send_job.main(["--test-connection", "--dry-run"]) == 0
        out = capsys.readouterr().out
        assert "$I" in out
        assert "G0 X1.000 Y1.000" in out

    def test_connection_check_streams(
        self,
        acking_port: list[AckingTransport],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        assert send_job.main(["--test-connection", "--port", "loop"]) == 0
        (port,) = acking_port
        assert port.port == "loop"
        assert port.sent.index("$I") < port.sent.index("G0 X1.000 Y1.000")
        assert not port.connected
        assert "Finished: completed" in capsys.readouterr().out

    def test_circle_streams(self, acking_port: list[AckingTransport]) -> None:
        assert send_job.main(["--test-circle"]) == 0
        (port,) = acking_port
        assert "G02 X35.000 Y20.000 I-15.000 J0.000 F800" in port.sent
        assert port.sent.count("G0 X0.000 Y0.000") == 1
