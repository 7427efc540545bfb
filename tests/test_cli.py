import io
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

from gomcp.cli import build_parser, main


class CliTests(unittest.TestCase):
    def setUp(self):
        fd, self.path = tempfile.mkstemp(suffix=".sgf")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write("(;GM[1]SZ[9];A[cc];B[gg])")

    def tearDown(self):
        os.unlink(self.path)

    def test_render_prints_board_and_moves(self):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(["render", self.path, "--size", "9"])
        self.assertEqual(code, 0)
        lines = out.getvalue().splitlines()
        self.assertEqual(lines[0], "  A B C D E F G H I")
        self.assertEqual(lines[1 + 9 - 7].split()[1 + 2], "A")
        self.assertEqual(lines[-1], "moves: AC7 BG3")

    def test_render_errors_exit_2(self):
        err = io.StringIO()
        with redirect_stderr(err):
            self.assertEqual(main(["render", self.path + ".missing"]), 2)
            self.assertEqual(main(["render", self.path, "--size", "40"]), 2)
        self.assertIn("error:", err.getvalue())

    def test_render_undecodable_file_exits_2(self):
        fd, path = tempfile.mkstemp(suffix=".sgf")
        with os.fdopen(fd, "wb") as f:
            f.write(b"(;GM[1]C[\xff\xfe];A[pd])")
        err = io.StringIO()
        try:
            with redirect_stderr(err):
                self.assertEqual(main(["render", path]), 2)
        finally:
            os.unlink(path)
        self.assertIn("cannot read game record", err.getvalue())

    def test_serve_defaults(self):
        args = build_parser().parse_args(["serve", "--stub", "--port", "0"])
        self.assertTrue(args.stub)
        self.assertEqual(args.port, 0)


if __name__ == "__main__":
    unittest.main()
