"""Tests for toolpath assembly, G-code rendering and statistics.

Validates that:
    - Bracket normalisation repairs pen state around draws and travels
    - Prologue and epilogue wrap every program
    - Cartesian and joint-space rendering produce the expected text
    - Unreachable joint-space targets become comments and are counted
    - Statistics follow the documented time estimate
"""

from __future__ import annotations

import math

import pytest

from drawbot.configs.loader import (
    CalibrationConfig,
    EstimateConfig,
    MachineConfig,
    load_config,
)
from drawbot.configs.settings import ConversionSettings
from drawbot.gcode.generator import (
    ToolpathAssembler,
    calibration_lines,
    circle_test_lines,
    collapse_repeats,
    connection_check_lines,
    home_lines,
    normalize_brackets,
)
from drawbot.gcode.stats import compute_stats
from drawbot.kinematics.scara import forward_kinematics
from drawbot.job_ir.operations import (
    Draw,
    DrawArc,
    Dwell,
    PenDown,
    PenUp,
    Raw,
    Travel,
    create_stroke,
)


@pytest.fixture()
def config() -> MachineConfig:
    return load_config()


@pytest.fixture()
def settings() -> ConversionSettings:
    return ConversionSettings()


# ---------------------------------------------------------------------------
# Command-list passes
# ---------------------------------------------------------------------------


class TestNormalizeBrackets:
    def test_inserts_pen_moves(self) -> None:
        out = normalize_brackets([Travel(0, 0), Draw(1, 1), Travel(2, 2)])
        assert out == [Travel(0, 0), PenDown(), Draw(1, 1), PenUp(), Travel(2, 2)]

    def test_drops_redundant_pen_commands(self) -> None:
        out = normalize_brackets([PenUp(), PenDown(), PenDown(), Draw(1, 1)])
        assert out == [PenDown(), Draw(1, 1), PenUp()]

    def test_arc_needs_pen_down(self) -> None:
        arc = DrawArc(1, 0, -1, 0)
        assert normalize_brackets([arc]) == [PenDown(), arc, PenUp()]

    def test_well_formed_unchanged(self) -> None:
        stroke = create_stroke([(0, 0), (1, 0), (1, 1)])
        assert normalize_brackets(stroke) == stroke


class TestCollapseRepeats:
    def test_consecutive_duplicates(self) -> None:
        out = collapse_repeats([Draw(1, 1), Draw(1, 1), Draw(2, 2), Draw(1, 1)])
        assert out == [Draw(1, 1), Draw(2, 2), Draw(1, 1)]


# ---------------------------------------------------------------------------
# Program structure
# ---------------------------------------------------------------------------


class TestBuild:
    def test_prologue_and_epilogue(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        body = create_stroke([(1, 1), (2, 2)])
        cmds = ToolpathAssembler(config, use_kinematics=False).build(body, settings)
        setup = [c for c in cmds if isinstance(c, Raw) and not c.is_comment]
        assert setup == [Raw("G21"), Raw("G90"), Raw("G92 X0 Y0 Z0")]
        assert cmds[-3:] == [PenUp(), Travel(0.0, 0.0), Raw("; End of drawing")]
        first_travel = next(c for c in cmds if isinstance(c, Travel))
        assert first_travel == Travel(0.0, 0.0)

    def test_header_comments(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        asm = ToolpathAssembler(config, use_kinematics=False).assemble(
            [], settings, header=["Raster: 4x4 px"],
        )
        assert asm.lines[:4] == [
            "; DrawBot G-code",
            "; Mode: raster_horizontal",
            "; Size: 50.0x50.0 mm",
            "; Raster: 4x4 px",
        ]

    def test_settle_dwell(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        lines = ToolpathAssembler(config, use_kinematics=False).assemble(
            [], settings, settle_s=1.0,
        ).lines
        assert "G4 P1" in lines

    def test_repeats_collapsed_when_optimizing(self, config: MachineConfig) -> None:
        body = [Travel(0, 0), PenDown(), Draw(1, 1), Draw(1, 1), PenUp()]
        asm = ToolpathAssembler(config, use_kinematics=False)
        on = asm.build(body, ConversionSettings(optimize_path=True))
        off = asm.build(body, ConversionSettings(optimize_path=False))
        assert len(off) == len(on) + 1


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestCartesianRender:
    def test_command_text(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        lines = ToolpathAssembler(config, use_kinematics=False).render(
            [
                Travel(1, 2),
                PenDown(),
                Draw(3.14159, 2),
                DrawArc(60, 50, -10, 0),
                DrawArc(60, 50, -10, 0, clockwise=False),
                PenUp(),
                Dwell(0.1),
                Raw("$X"),
            ],
            settings,
        )
        assert lines == [
            "G0 X1.000 Y2.000",
            "G1 Z-1.00 F800",
            "G1 X3.142 Y2.000 F800",
            "G02 X60.000 Y50.000 I-10.000 J0.000 F800",
            "G03 X60.000 Y50.000 I-10.000 J0.000 F800",
            "G0 Z5.00",
            "G4 P0.1",
            "$X",
        ]

    def test_to_text(self, config: MachineConfig, settings: ConversionSettings) -> None:
        asm = ToolpathAssembler(config, use_kinematics=False).assemble(
            create_stroke([(1, 1), (2, 2)]), settings,
        )
        text = asm.to_text()
        assert text.endswith("\n")
        assert text.count("\n") == len(asm.lines)
        assert asm.skipped_points == 0


class TestJointSpaceRender:
    def test_angles(self, config: MachineConfig, settings: ConversionSettings) -> None:
        # Shoulder at (0, 100); (0, 0) is 100 mm straight below it
        lines = ToolpathAssembler(config, use_kinematics=True).render(
            [Travel(0, 0)], settings,
        )
        assert lines == ["G0 A-30.000 B-120.000"]

    def test_unreachable_skipped(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        asm = ToolpathAssembler(config, use_kinematics=True)
        # Shoulder at (0, 100): chord ends beyond y = 300 are out of reach
        lines = asm.render([Travel(0, 0), Draw(0, 400)], settings)
        assert lines[-1] == "; unreachable X0.000 Y400.000 skipped"
        assert asm.skipped_points == 100

    def test_skip_count_resets(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        asm = ToolpathAssembler(config, use_kinematics=True)
        asm.render([Travel(0, 400)], settings)
        asm.render([Travel(0, 0)], settings)
        assert asm.skipped_points == 0

    def test_draw_split_into_straight_chords(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        lines = ToolpathAssembler(config, use_kinematics=True).render(
            [Travel(0, 50), Draw(100, 50)], settings,
        )
        chords = lines[1:]
        assert len(chords) == 100
        xs = []
        for line in chords:
            code, a, b, feed = line.split()
            assert (code, feed) == ("G1", "F800")
            x, y = forward_kinematics(float(a[1:]), float(b[1:]), config.kinematics)
            assert y == pytest.approx(50.0, abs=1e-2)
            xs.append(x)
        assert xs == sorted(xs)
        assert xs[0] == pytest.approx(1.0, abs=1e-2)
        assert xs[-1] == pytest.approx(100.0, abs=1e-2)

    def test_zero_length_draw_is_one_line(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        lines = ToolpathAssembler(config, use_kinematics=True).render(
            [Travel(0, 50), Draw(0, 50)], settings,
        )
        assert len(lines) == 2
        assert lines[1].startswith("G1 A")

    def test_arc_flattened(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        lines = ToolpathAssembler(config, use_kinematics=True).render(
            [Travel(50, 100), DrawArc(50, 100, -50, 0)], settings,
        )
        arc_lines = lines[1:]
        assert len(arc_lines) == math.ceil(2 * math.pi * 50 / 1.0)
        assert all(
            line.startswith("G1 A") and line.endswith(" F800") for line in arc_lines
        )

    def test_geometry_default(self, config: MachineConfig) -> None:
        assert ToolpathAssembler(config).use_kinematics is config.use_kinematics

    def test_header_mentions_arms(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        lines = ToolpathAssembler(config, use_kinematics=True).assemble(
            [], settings,
        ).lines
        assert any(line.startswith("; SCARA arms") for line in lines)


class TestCalibrationLines:
    def test_grbl_settings(self) -> None:
        assert calibration_lines(CalibrationConfig()) == [
            "$100=65.0",
            "$101=65.0",
            "$102=200.0",
            "$110=800.0",
            "$111=800.0",
            "$112=800.0",
            "$120=10.0",
            "$121=10.0",
            "$122=10.0",
        ]


class TestServicePrograms:
    def test_home(self, config: MachineConfig, settings: ConversionSettings) -> None:
        assert home_lines(config, settings, use_kinematics=False) == [
            "G21", "G90", "G0 Z5.00", "G0 X0.000 Y0.000",
        ]

    def test_circle(self, config: MachineConfig, settings: ConversionSettings) -> None:
        lines = circle_test_lines(config, settings, use_kinematics=False)
        assert lines == [
            "G21",
            "G90",
            "G0 Z5.00",
            "G0 X35.000 Y20.000",
            "G1 Z-1.00 F800",
            "G02 X35.000 Y20.000 I-15.000 J0.000 F800",
            "G0 Z5.00",
            "G0 X0.000 Y0.000",
        ]

    def test_circle_joint_space_stays_on_circle(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        lines = circle_test_lines(config, settings, use_kinematics=True)
        chords = [line for line in lines if line.startswith("G1 A")]
        assert len(chords) == math.ceil(2 * math.pi * 15 / 1.0)
        for line in chords:
            _, a, b, _ = line.split()
            x, y = forward_kinematics(float(a[1:]), float(b[1:]), config.kinematics)
            assert math.hypot(x - 20.0, y - 20.0) == pytest.approx(15.0, abs=1e-2)
        assert not any(line.startswith("; unreachable") for line in lines)

    def test_connection_check(
        self, config: MachineConfig, settings: ConversionSettings,
    ) -> None:
        lines = connection_check_lines(config, settings, use_kinematics=False)
        assert lines[:2] == ["$I", "$X"]
        assert "?" not in lines
        assert lines[-1] == "G0 X1.000 Y1.000"


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class TestStats:
    def test_distances_and_estimate(self) -> None:
        cmds = [Travel(3, 4), PenDown(), Draw(3, 8), PenUp()]
        stats = compute_stats(
            cmds,
            ConversionSettings(feed_rate=600, travel_speed=1200),
            EstimateConfig(pen_move_time_s=0.5, accel_allowance_s=0.1),
        )
        assert stats.travel_distance_mm == pytest.approx(5.0)
        assert stats.draw_distance_mm == pytest.approx(4.0)
        assert stats.total_distance_mm == pytest.approx(9.0)
        assert stats.moves == 2
        assert stats.draw_moves == 1
        assert stats.pen_transitions == 2
        assert stats.estimated_time_s == pytest.approx(0.4 + 0.25 + 1.0 + 0.2)

    def test_zero_length_moves_not_counted(self) -> None:
        stats = compute_stats(
            [Travel(0, 0), PenDown(), Draw(0, 0), PenUp()], ConversionSettings(),
        )
        assert stats.moves == 0
        assert stats.pen_transitions == 2

    def test_redundant_pen_commands_not_transitions(self) -> None:
        stats = compute_stats([PenUp(), PenDown(), PenDown()], ConversionSettings())
        assert stats.pen_transitions == 1

    def test_full_circle_length(self) -> None:
        stats = compute_stats(
            [Travel(10, 0), PenDown(), DrawArc(10, 0, -10, 0), PenUp()],
            ConversionSettings(),
        )
        assert stats.draw_distance_mm == pytest.approx(2 * math.pi * 10)

    def test_dwell_totalled(self) -> None:
        stats = compute_stats([Dwell(0.1), Dwell(0.25)], ConversionSettings())
        assert stats.dwell_time_s == pytest.approx(0.35)

    def test_summary(self) -> None:
        text = compute_stats([Travel(1, 0)], ConversionSettings()).summary()
        assert "Estimated time" in text
        assert "Travel distance" in text
