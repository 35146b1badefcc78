"""File parsing utilities that convert supported file formats into a
normalized list of test-prep questions.

Supported input types: JSON, CSV, TXT and DOCX. Parsers return a list of
dictionaries with keys: `question_text`, `question_type`, `options`,
`correct_answer`, `explanation` and `points`.
"""

import csv
import io
import json
from typing import Dict, List, Tuple

import docx

SUPPORTED_EXTENSIONS = (".json", ".csv", ".txt", ".docx")


def parse_file_to_questions(file_bytes: bytes, filename: str) -> List[Dict]:
    """Dispatch to the appropriate parser based on file extension."""
    name = filename.lower()
    if name.endswith('.json'):
        return parse_json(file_bytes)
    if name.endswith('.csv'):
        return parse_csv(file_bytes)
    if name.endswith('.txt'):
        return parse_txt(file_bytes)
    if name.endswith('.docx'):
        return parse_docx(file_bytes)
    raise ValueError('Unsupported file type')


def parse_json(b: bytes):
    """Parse a JSON array (or `{"questions": [...]}`) and normalize items."""
    try:
        data = json.loads(b.decode('utf-8-sig'))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f'invalid JSON: {exc}')
    if isinstance(data, dict):
        data = data.get('questions', [])
    if not isinstance(data, list):
        raise ValueError('JSON must be a list of questions')
    return [normalize_question(item) if isinstance(item, dict) else item for item in data]


def parse_csv(b: bytes):
    """Parse a CSV where a single column contains pipe-separated options.

    Expected columns: `question` or `question_text`, optional `options`
    (pipe separated), `correct` / `correct_answer`, `explanation`,
    `points` and `question_type`.
    """
    out = []
    reader = csv.DictReader(io.StringIO(b.decode('utf-8-sig')))
    for row in reader:
        options_raw = row.get('options') or row.get('answers') or ''
        options = [p.strip() for p in options_raw.split('|') if p.strip()]
        out.append(normalize_question({
            'question_text': row.get('question') or row.get('question_text') or '',
            'question_type': row.get('question_type'),
            'options': options,
            'correct_answer': row.get('correct_answer') or row.get('correct'),
            'explanation': row.get('explanation'),
            'points': row.get('points'),
        }))
    return out


def parse_txt(b: bytes):
    """Parse a plaintext format where questions are separated by blank lines.

    The first line is the question; following lines are options. An option
    flagged with `*` or `(correct)` is the correct answer, otherwise the
    first option is.
    """
    blocks = [sec.strip() for sec in b.decode('utf-8-sig').replace('\r\n', '\n').split('\n\n') if sec.strip()]
    return [_block_to_question(blk) for blk in blocks]


def parse_docx(b: bytes):
    """Parse a DOCX document into question blocks.

    Paragraph groups separated by empty paragraphs are treated as a
    question block. If a block contains `|` it is parsed as
    `question|option1|option2...` otherwise the first line is the
    question and subsequent lines are options.
    """
    doc = docx.Document(io.BytesIO(b))
    blocks = []
    current = []
    for p in doc.paragraphs:
        text = (p.text or '').strip()
        if not text:
            if current:
                blocks.append('\n'.join(current))
                current = []
            continue
        current.append(text)
    if current:
        blocks.append('\n'.join(current))
    return [_block_to_question(blk) for blk in blocks]


def _block_to_question(blk: str) -> Dict:
    if '|' in blk:
        parts = [x.strip() for x in blk.split('|') if x.strip()]
    else:
        parts = [line.strip() for line in blk.splitlines() if line.strip()]
    question, raw_options = parts[0], parts[1:]
    options = []
    correct = None
    for line in raw_options:
        text, is_correct = _parse_answer_line(line)
        options.append(text)
        if is_correct and correct is None:
            correct = text
    if correct is None and options:
        correct = options[0]
    qtype = 'MULTIPLE_CHOICE' if options else 'SHORT_ANSWER'
    return normalize_question({'question_text': question, 'options': options,
                               'correct_answer': correct, 'question_type': qtype})


def normalize_question(item: dict) -> dict:
    """Normalize a parsed question object (maps alternative keys to the
    canonical output shape).
    """
    options = item.get('options') or item.get('answers') or item.get('possible_answers') or []
    if options and isinstance(options[0], dict):
        # [{"answer_text": ..., "is_correct": ...}] style
        flagged = [o.get('answer_text') for o in options if o.get('is_correct')]
        options = [o.get('answer_text') for o in options]
        item = {**item, 'correct_answer': item.get('correct_answer') or (flagged[0] if flagged else None)}
    qtype = item.get('question_type')
    return {
        'question_text': (item.get('question_text') or item.get('question') or '').strip(),
        'question_type': str(qtype).strip().upper() if qtype else ('MULTIPLE_CHOICE' if options else 'SHORT_ANSWER'),
        'options': [str(o).strip() for o in options if o is not None and str(o).strip()],
        'correct_answer': _clean(item.get('correct_answer') or item.get('correct')),
        'explanation': _clean(item.get('explanation') or item.get('solution')),
        'points': _coerce_int(item.get('points')) or 1,
    }


def _parse_answer_line(text: str) -> Tuple[str, bool]:
    """Detect simple correctness markers in an option line.

    Supports leading '*' or trailing markers like '(correct)'; falls back to False.
    """
    is_correct = False
    cleaned = text.strip()
    lower = cleaned.lower()
    for marker in ('(correct)', '[correct]', '{correct}'):
        if lower.endswith(marker):
            is_correct = True
            cleaned = cleaned[: -len(marker)].strip()
            break
    if cleaned.startswith('*'):
        is_correct = True
        cleaned = cleaned.lstrip('*').strip()
    return cleaned, is_correct


def _clean(val):
    if val is None:
        return None
    val = str(val).strip()
    return val or None


def _coerce_int(val):
    try:
        return int(val) if val is not None and str(val).strip() != '' else None
    except (TypeError, ValueError):
        return None
