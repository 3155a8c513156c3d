import io
import json

from weaver.main import main, parse_flags, parse_labels


def test_parse_flags():
    assert parse_flags("a, b=2,c=false,d=x") == {"a": True, "b": 2, "c": False, "d": "x"}
    assert parse_flags(None) == {}


def test_parse_labels():
    assert parse_labels(" x,,y ") == ["x", "y"]


def test_file_to_stdout(write, capsys):
    write("lib.txt", "L\n")
    src = write("main.txt", "//#include lib.txt\n//#if debug\nD\n//#endif\nM\n")
    assert main([str(src), "--flags", "debug"]) == 0
    assert capsys.readouterr().out == "L\nD\nM\n"


def test_inline_text(tmp_path, capsys, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["hello", "world"]) == 0
    assert capsys.readouterr().out == "hello world\n"


def test_stdin(tmp_path, write, capsys, monkeypatch):
    write("lib.txt", "L\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("sys.stdin", io.StringIO("//#include lib.txt\nS\n"))
    assert main(["-f", "virtual.txt"]) == 0
    assert capsys.readouterr().out == "L\nS\n"


def test_output_with_external_map(tmp_path, write):
    src = write("main.js", "a\n//#label x\nb\n//#endlabel\n")
    out = tmp_path / "dist" / "out.js"
    assert main([str(src), "-o", str(out), "-s", "true", "--labels", "y"]) == 0
    assert out.read_text() == "a\n//# sourceMappingURL=out.js.map"
    smap = json.loads((tmp_path / "dist" / "out.js.map").read_text())
    assert smap["file"] == "out.js"
    assert smap["mappings"] == "AAAA"


def test_output_with_inline_map(tmp_path, write):
    src = write("main.js", "a\n")
    out = tmp_path / "out.js"
    assert main([str(src), "-o", str(out), "-s", "inline"]) == 0
    assert out.read_text().startswith("a\n//# sourceMappingURL=data:application/json;base64,")
    assert not (tmp_path / "out.js.map").exists()


def test_build_error(tmp_path, write, capsys):
    src = write("bad.txt", "//#bogus\n")
    assert main([str(src)]) == 1
    err = capsys.readouterr().err
    assert "bad.txt:1: build error: unknown directive '#bogus'" in err


def test_bad_map_mode(write, capsys):
    src = write("a.txt", "a\n")
    assert main([str(src), "-s", "maybe"]) == 2
    assert "unknown source map mode" in capsys.readouterr().err


def test_unwritable_output(tmp_path, write, capsys):
    src = write("a.txt", "a\n")
    write("blocker", "x\n")
    assert main([str(src), "-o", str(tmp_path / "blocker" / "out.txt")]) == 1
    assert "weaver: cannot write" in capsys.readouterr().err


def test_bad_inline_map_exit_code(write, capsys):
    src = write("a.js", "a\n//# sourceMappingURL=data:application/json;base64,abc\n")
    assert main([str(src), "-s", "true"]) == 1
    assert "load error: invalid source map" in capsys.readouterr().err
