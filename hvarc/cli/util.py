"""Helpers shared by the hvarc commands."""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from pprint import pformat
from typing import Any

import luigi
import yaml
from jinja2 import Environment, FileSystemLoader
from luigi.execution_summary import LuigiRunResult

PACKAGE_DIR = Path(__file__).resolve().parent.parent
CONFIG_TEMPLATE_PATH = PACKAGE_DIR.joinpath("static", "example_hvarc.yml")
TEMPLATE_DIR = PACKAGE_DIR.joinpath("template")


def write_config_yml(path: str | os.PathLike[str]) -> None:
    """Copy the config template to ``path`` unless a file already exists."""
    dest = Path(path).resolve()
    if dest.is_file():
        print_log(f"The file exists:\t{dest}")
    else:
        print_log(f"Create a config YAML:\t{dest}")
        shutil.copyfile(CONFIG_TEMPLATE_PATH, dest)


def print_log(message: str) -> None:
    logging.getLogger(__name__).debug(message)
    print(f">>\t{message}", flush=True)


def fetch_executable(cmd: str, ignore_errors: bool = False) -> str | None:
    """Locate an executable on PATH.

    Raises:
        RuntimeError: If ``cmd`` is missing and ``ignore_errors`` is False
    """
    path = shutil.which(cmd)
    if path or ignore_errors:
        return path
    msg = f"command not found: {cmd}"
    raise RuntimeError(msg)


def read_yml(path: str | os.PathLike[str]) -> Any:
    with Path(path).open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    logging.getLogger(__name__).debug("YAML data:%s%s", os.linesep, pformat(data))
    return data


def print_yml(data: object) -> None:
    print(yaml.dump(data, sort_keys=False))


def render_luigi_log_cfg(
    log_cfg_path: str | os.PathLike[str],
    console_log_level: str = "WARNING",
    file_log_level: str = "DEBUG",
) -> Path:
    """Render the Luigi logging config next to the log file it points at.

    Args:
        log_cfg_path: Path of the config to write
        console_log_level: Level of the console handler
        file_log_level: Level of the file handler

    Returns:
        Path of the log file named in the config
    """
    log_cfg = Path(log_cfg_path).resolve()
    log_cfg.parent.mkdir(parents=True, exist_ok=True)
    log_txt = log_cfg.parent.joinpath(
        f"luigi.{file_log_level}.{datetime.now():%Y%m%d_%H%M%S}.log.txt"
    )
    print_log(
        "{} a file:\t{}".format("Overwrite" if log_cfg.exists() else "Render", log_cfg)
    )
    template = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR), encoding="utf8")
    ).get_template("luigi.log.cfg.j2")
    log_cfg.write_text(
        template.render(
            console_log_level=console_log_level,
            file_log_level=file_log_level,
            log_txt_path=str(log_txt),
        )
        + os.linesep
    )
    return log_txt


def build_luigi_tasks(
    check_scheduling_succeeded: bool = True,
    hide_summary: bool = False,
    **kwargs: object,
) -> LuigiRunResult:
    """Run tasks on the local scheduler.

    Args:
        check_scheduling_succeeded: Assert that scheduling succeeded
        hide_summary: Skip printing the execution summary
        **kwargs: Passed through to ``luigi.build``
    """
    r = luigi.build(local_scheduler=True, detailed_summary=True, **kwargs)
    if not hide_summary:
        print(os.linesep.join(["", "Execution summary:", r.summary_text, str(r)]))
    if check_scheduling_succeeded:
        assert r.scheduling_succeeded, r.one_line_summary
    return r


def remove_cache_dirs(
    root_dir_path: str | os.PathLike[str], name: str = ".ref_cache"
) -> list[Path]:
    """Remove the CRAM reference caches left under an output directory.

    Args:
        root_dir_path: Directory searched recursively
        name: Name of the cache directories

    Returns:
        Removed directories
    """
    cache_dirs = sorted(
        d for d in Path(root_dir_path).resolve().rglob(name) if d.is_dir()
    )
    for d in cache_dirs:
        print_log(f"Remove a cache directory:\t{d}")
        shutil.rmtree(str(d))
    return cache_dirs
