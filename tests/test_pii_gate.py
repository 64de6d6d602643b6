"""Tests for the PII gate script, and the gate itself over src/."""

from pathlib import Path

from scripts.gate_security_pii import check_file, check_tree

SRC_DIR = Path(__file__).parent.parent / "src"


class TestCheckFile:
    def test_print_flagged(self, tmp_path):
        f = tmp_path / "mod.py"
        f.write_text('def f():\n    print("hi")\n', encoding="utf-8")

        errors = check_file(f)

        assert len(errors) == 1
        assert "print()" in errors[0]

    def test_print_in_comment_ignored(self, tmp_path):
        f = tmp_path / "mod.py"
        f.write_text("x = 1  # print(x)\n", encoding="utf-8")

        assert check_file(f) == []

    def test_logger_with_phone_flagged(self, tmp_path):
        f = tmp_path / "mod.py"
        f.write_text('logger.info("reply to %s", message.phone)\n', encoding="utf-8")

        errors = check_file(f)

        assert errors
        assert "phone" in errors[0]

    def test_logger_with_mask_helper_allowed(self, tmp_path):
        f = tmp_path / "mod.py"
        f.write_text('logger.info("reply to %s", mask_phone(message.phone))\n', encoding="utf-8")

        assert check_file(f) == []


class TestSourceTree:
    def test_src_passes_gate(self):
        assert check_tree(SRC_DIR) == []
