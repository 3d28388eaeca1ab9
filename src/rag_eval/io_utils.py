from __future__ import annotations

import json
import re
from dataclasses import replace
from pathlib import Path
from typing import Any

from .schema import Document, QueryCase, RelevanceJudgment

TEXT_SUFFIXES = {".md", ".txt", ".markdown"}


def _load_jsonl(path: str | Path) -> list[dict]:
    records: list[dict] = []
    with Path(path).open("r", encoding="utf-8") as file_handle:
        for line in file_handle:
            if line.strip():
                records.append(json.loads(line))
    return records


def _load_json(path: str | Path) -> dict[str, Any]:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def load_test_cases(path: str | Path = "evaluation/tests.jsonl") -> list[QueryCase]:
    """Load keyword-judged test questions, one JSON object per line.

    Each record carries `question`, `keywords`, `reference_answer` and
    `category`; `id`, `type`, `source`, `doc_id` and `section_id` are optional.
    """
    cases: list[QueryCase] = []
    for index, record in enumerate(_load_jsonl(path)):
        query_id = str(record.get("id", f"Q-{index:04d}"))
        cases.append(
            QueryCase(
                query_id=query_id,
                question=record["question"],
                judgment=RelevanceJudgment(
                    query_id=query_id,
                    doc_id=_optional_str(record.get("doc_id")),
                    section_id=_optional_str(record.get("section_id")),
                    keywords=tuple(record.get("keywords", ())),
                ),
                category=record.get("category", "uncategorized"),
                query_type=record.get("type", "extractive"),
                modality=record.get("source", "text"),
                reference_answer=record.get("reference_answer"),
            )
        )
    return cases


def load_query_cases(
    queries_path: str | Path,
    qrels_path: str | Path,
    answers_path: str | Path | None = None,
) -> list[QueryCase]:
    """Join query, qrel and optional answer mappings keyed by query id.

    Queries without a qrel are skipped since they cannot be scored.
    """
    queries = _load_json(queries_path)
    qrels = _load_json(qrels_path)
    answers = _load_json(answers_path) if answers_path is not None else {}

    cases: list[QueryCase] = []
    for query_id in sorted(queries):
        if query_id not in qrels:
            continue
        query = queries[query_id]
        qrel = qrels[query_id]
        query_type = query.get("type", "extractive")
        cases.append(
            QueryCase(
                query_id=query_id,
                question=query["query"],
                judgment=RelevanceJudgment(
                    query_id=query_id,
                    doc_id=_optional_str(qrel.get("doc_id")),
                    section_id=_optional_str(qrel.get("section_id")),
                    keywords=tuple(qrel.get("keywords", ())),
                ),
                category=query.get("category", query_type),
                query_type=query_type,
                modality=query.get("source", "text"),
                reference_answer=answers.get(query_id),
            )
        )
    return cases


_HEADING = re.compile(r"^#{1,6}\s+\S", re.MULTILINE)


def split_sections(document: Document) -> list[Document]:
    """Split a markdown document at its headings.

    Each non-blank block becomes a `Document` sharing the source `doc_id`,
    with `section` set to its position ("0", "1", ...) among those blocks.
    Text before the first heading is a block of its own.
    """
    starts = [0] + [match.start() for match in _HEADING.finditer(document.text)]
    bounds = zip(starts, starts[1:] + [len(document.text)])
    blocks = [document.text[start:end].strip() for start, end in bounds]
    return [
        replace(document, text=block, section=str(idx))
        for idx, block in enumerate(block for block in blocks if block)
    ]


def load_knowledge_base(folder: str | Path = "knowledge-base", sections: bool = False) -> list[Document]:
    """Read every text file under `folder` as a `Document`.

    The document id is the POSIX path relative to `folder`
    (e.g. ``employees/Avery Lancaster.md``), the title is the file stem and
    the category is the first path component. With `sections`, each file is
    split at its markdown headings by `split_sections`.
    """
    root = Path(folder)
    documents: list[Document] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in TEXT_SUFFIXES:
            continue
        relative = path.relative_to(root)
        if any(part.startswith(".") for part in relative.parts):
            continue
        document = Document(
            doc_id=relative.as_posix(),
            title=path.stem,
            text=path.read_text(encoding="utf-8"),
            category=relative.parts[0] if len(relative.parts) > 1 else "",
        )
        documents.extend(split_sections(document) if sections else [document])
    return documents
