"""
Shared fixtures: an isolated content root per test, a seeded school with
two workspaces, and sample content for each content type.
"""

import copy

import pytest

from studyrepo.core.locks import KeyedLocks
from studyrepo.core.store import FileStore


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point configuration at a temporary content root."""
    monkeypatch.setenv("CONTENT_DIR", str(tmp_path / "content"))
    monkeypatch.setenv("ALLOW_SUBJECT_AUTOCREATE", "true")
    monkeypatch.setenv("STORE_LOCK_TIMEOUT_SEC", "2")
    monkeypatch.delenv("DEFAULT_SCHOOL_ID", raising=False)
    monkeypatch.delenv("MAX_UPLOAD_BYTES", raising=False)


@pytest.fixture
def store(tmp_path):
    """Empty store rooted in the test's temp directory."""
    s = FileStore(tmp_path / "content", locks=KeyedLocks(timeout=2))
    s.ensure_root()
    return s


@pytest.fixture
def seeded_store(store):
    """School 'demo' with econ, stats and a disabled history subject; workspaces alice and bob."""
    store.create_school("demo", [
        {"id": "econ", "label": "Economics", "aliases": ["micro"]},
        {"id": "stats", "label": "Statistics"},
        {"id": "history", "label": "History", "enabled": False},
    ], name="Demo School")
    store.create_workspace("alice", "Alice", school_id="demo", enabled_subject_ids=["econ", "stats", "history"])
    store.create_workspace("bob", "Bob", school_id="demo", enabled_subject_ids=["econ"])
    return store


FLASHCARDS = [
    {"question": "2+2?", "answer": "4"},
    {"question": "Capital of France?", "answer": {"text": "Paris"}},
]

DECODER_PROBLEM = {
    "id": "d1",
    "title": "Extra shift",
    "original_question": "A bakery can run an extra shift. The shift costs 300 and brings in 450. "
                         "Should the bakery run the extra shift?",
    "segments": [
        {"text": "A bakery can run an extra shift.", "has_info": False},
        {
            "text": "The shift costs 300 and brings in 450.",
            "has_info": True,
            "highlight_text": "costs 300",
            "condition": "Cost of the shift",
            "knowledge": "Compare benefit with cost",
            "explanation": "This is the cost side",
            "highlight_color": "yellow"
        },
        {
            "text": "Should the bakery run the extra shift?",
            "has_info": True,
            "highlight_text": "Should the bakery run the extra shift?",
            "condition": "Decision to make",
            "knowledge": "Decision goal",
            "explanation": "What we must decide",
            "highlight_color": "blue"
        },
    ],
    "traps": [
        {"title": "Ignoring cost", "description": "Students look only at the 450 revenue and forget the cost."}
    ],
    "solution": [
        {"step_desc": "Compare", "content": "Benefit 450 exceeds cost 300",
         "source_type": "prompt_info", "source_label": "question"},
        {"step_desc": "Conclusion", "content": "Therefore the bakery should run the shift",
         "source_type": "external_knowledge", "source_label": "decision rule"},
    ]
}

PRACTICE_QUESTION = {
    "id": "p1",
    "type": "choice",
    "question": "Which cost is left out of the decision?",
    "options": ["A. Money already spent", "B. Cost of the next unit"],
    "answer": "A",
    "analysis": {
        "decoding": ["Find the cost that does not change the decision"],
        "conditions": ["Past spending cannot be recovered"],
        "steps": ["Identify past spending", "Leave it out of the comparison"],
        "option_analysis": ["B still changes the decision"]
    }
}


@pytest.fixture
def flashcards():
    return copy.deepcopy(FLASHCARDS)


@pytest.fixture
def decoder_problem():
    return copy.deepcopy(DECODER_PROBLEM)


@pytest.fixture
def practice_question():
    return copy.deepcopy(PRACTICE_QUESTION)
