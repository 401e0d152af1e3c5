import subprocess
from types import SimpleNamespace

import yaml
from click.testing import CliRunner

from pageturtle import __version__
from pageturtle.cli import cli

SKIP_GIT = {"PAGETURTLE_SKIP_GIT_INIT": "1"}


def answer_prompts(monkeypatch, *answers):
    replies = iter(answers)
    monkeypatch.setattr(
        "pageturtle.cli.questionary.text",
        lambda *args, **kwargs: SimpleNamespace(ask=lambda: next(replies)),
    )


def test_cli_init_scaffolds_project_that_builds(monkeypatch, tmp_path):
    runner = CliRunner()
    target = tmp_path / "blog"
    result = runner.invoke(cli, ["init", "-d", str(target)], env=SKIP_GIT)
    assert result.exit_code == 0
    assert (target / "pageturtle.yaml").exists()
    assert (target / "posts" / "hello-world.md").exists()
    assert (target / "pages" / "about.md").exists()
    assert (target / "assets" / "styles.css").exists()
    assert (target / "templates" / "base.html").exists()
    assert not (target / ".git").exists()

    monkeypatch.chdir(target)
    result = runner.invoke(cli, ["build"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Built revision 1: 1 posts" in result.output
    assert (target / "dist" / "posts" / "hello-world" / "index.html").exists()
    assert (target / "dist" / "about" / "index.html").exists()


def test_cli_init_refuses_non_empty_directory(tmp_path):
    (tmp_path / "notes.txt").write_text("x", encoding="utf-8")
    result = CliRunner().invoke(cli, ["init", "-d", str(tmp_path)], env=SKIP_GIT)
    assert result.exit_code != 0
    assert "non-empty" in result.output


def test_cli_init_survives_git_failure(monkeypatch, tmp_path):
    def failing_run(*args, **kwargs):
        raise subprocess.CalledProcessError(128, args[0])

    monkeypatch.setattr("pageturtle.cli.shutil.which", lambda name: "/usr/bin/git")
    monkeypatch.setattr("pageturtle.cli.subprocess.run", failing_run)
    monkeypatch.delenv("PAGETURTLE_SKIP_GIT_INIT", raising=False)
    result = CliRunner().invoke(cli, ["init", "-d", str(tmp_path / "blog")])
    assert result.exit_code == 0
    assert "Skipped git init" in result.output


def test_cli_build_reports_duplicate_slug(monkeypatch, project, add_post):
    runner = CliRunner()
    monkeypatch.chdir(project)
    assert runner.invoke(cli, ["build"]).exit_code == 0
    index = (project / "dist" / "index.html").read_bytes()

    add_post(project, "z-copy.md", "Copy", "2024-06-01", slug="a")
    result = runner.invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "Build failed:" in result.output
    assert "File: posts/z-copy.md" in result.output
    assert "posts/a.md" in result.output
    assert (project / "dist" / "index.html").read_bytes() == index


def test_cli_build_without_config_fails(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "File: pageturtle.yaml" in result.output


def test_cli_dev_passes_ports(monkeypatch, project):
    called = {}

    class DummyServer:
        def __init__(self, root, http_port=None, ws_port=None):
            called.update(root=root, port=http_port, ws_port=ws_port)

        def start(self):
            called["started"] = True

    monkeypatch.chdir(project)
    monkeypatch.setattr("pageturtle.server.DevServer", DummyServer)
    result = CliRunner().invoke(cli, ["dev", "--port", "5050", "--ws-port", "5051"], catch_exceptions=False)
    assert result.exit_code == 0
    assert called == {"root": project, "port": 5050, "ws_port": 5051, "started": True}


def test_cli_dev_without_config_fails(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["dev"])
    assert result.exit_code == 1
    assert "pageturtle.yaml" in result.output


def test_cli_new_writes_post(monkeypatch, project):
    monkeypatch.chdir(project)
    answer_prompts(monkeypatch, "My First Post!", "python, , notes")
    result = CliRunner().invoke(cli, ["new"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Created posts/my-first-post.md" in result.output

    text = (project / "posts" / "my-first-post.md").read_text(encoding="utf-8")
    front_matter = yaml.safe_load(text.split("---")[1])
    assert front_matter["title"] == "My First Post!"
    assert front_matter["tags"] == ["python", "notes"]
    assert "Write your post here." in text

    answer_prompts(monkeypatch, "My First Post", "")
    result = CliRunner().invoke(cli, ["new"])
    assert result.exit_code == 1
    assert "File already exists" in result.output


def test_cli_new_aborts_on_cancel(monkeypatch, project):
    monkeypatch.chdir(project)
    answer_prompts(monkeypatch, None)
    result = CliRunner().invoke(cli, ["new"])
    assert result.exit_code == 1
    assert sorted(p.name for p in (project / "posts").iterdir()) == ["a.md", "b.md"]


def test_cli_help_and_version():
    runner = CliRunner()
    result = runner.invoke(cli, ["help"])
    assert result.exit_code == 0
    for command in ("init", "new", "build", "dev"):
        assert command in result.output

    result = runner.invoke(cli, ["--version"])
    assert result.output.strip() == f"pageturtle, version {__version__}"


def test_module_main_entrypoint():
    from pageturtle.__main__ import main

    assert callable(main)


def test_main_invokes_cli(monkeypatch):
    import pageturtle.cli as cli_mod

    called = {}
    monkeypatch.setattr(cli_mod, "cli", lambda: called.setdefault("ran", True))
    cli_mod.main()
    assert called == {"ran": True}
