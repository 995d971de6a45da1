"""Shared pytest fixtures for all test modules."""

from pathlib import Path

import pytest

from hvarc.plan.models import Sample
from hvarc.task.core import ShellTask

FAI_LINES = [
    ("chr1", 12_000_000),
    ("chr2", 4_000_000),
    ("chrM", 16_569),
    ("chrUn_KI270302v1", 2_274),
    ("chr1_KI270706v1_random", 175_055),
]


def write_fai(fa_path: Path, contigs=FAI_LINES) -> Path:
    """Write a FASTA file and its index with the given contig lengths."""
    fa_path.write_text(">" + contigs[0][0] + "\nACGT\n")
    fai_path = Path(f"{fa_path}.fai")
    fai_path.write_text(
        "".join(f"{n}\t{length}\t0\t60\t61\n" for n, length in contigs)
    )
    return fai_path


@pytest.fixture
def fa_path(tmp_path: Path) -> Path:
    """Reference FASTA with a FASTA index beside it."""
    p = tmp_path / "ref.fa"
    write_fai(p)
    return p


def touch_alignment(path: Path) -> Path:
    path.write_bytes(b"")
    path.with_name(path.name + ".bai").write_bytes(b"")
    return path


@pytest.fixture
def samples(tmp_path: Path, fa_path: Path) -> list[Sample]:
    """Two samples with indexed (empty) BAM files."""
    return [
        Sample(
            alias=alias,
            alignment_path=str(touch_alignment(tmp_path / f"{alias}.bam")),
            fa_path=str(fa_path),
        )
        for alias in ["S1", "S2"]
    ]


@pytest.fixture
def shell_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict]:
    """Record shell invocations instead of running them.

    Declared outputs are created so that tasks complete; outputs without a
    file extension are created as directories.
    """
    calls: list[dict] = []

    def fake_setup_shell(cls, run_id=None, cwd=None, **kwargs):
        if cwd:
            Path(cwd).mkdir(parents=True, exist_ok=True)

    def fake_run_shell(cls, args, output_files_or_dirs=None, **kwargs):
        calls.append({"args": args, "output_files_or_dirs": output_files_or_dirs})
        outputs = (
            output_files_or_dirs
            if isinstance(output_files_or_dirs, (list, tuple))
            else [output_files_or_dirs]
        )
        for o in outputs:
            if not o:
                continue
            elif Path(o).suffix:
                Path(o).parent.mkdir(parents=True, exist_ok=True)
                Path(o).touch()
            else:
                Path(o).mkdir(parents=True, exist_ok=True)

    monkeypatch.setattr(ShellTask, "setup_shell", classmethod(fake_setup_shell))
    monkeypatch.setattr(ShellTask, "run_shell", classmethod(fake_run_shell))
    return calls
