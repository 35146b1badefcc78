import importlib.util
import pathlib

SCRIPT = pathlib.Path(__file__).resolve().parents[1] / 'scripts' / 'import_questions.py'


def _load_script():
    spec = importlib.util.spec_from_file_location('import_questions', SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_import_script_reports_unreadable_files_and_keeps_going(client, make_test, admin, headers, tmp_path,
                                                                capsys):
    test = make_test()
    section_id = client.get(f"/admin/tests/{test['id']}", headers=headers(admin)).json()['sections'][0]['id']
    broken = tmp_path / 'broken.json'
    broken.write_text('{not json')
    spreadsheet = tmp_path / 'bank.xls'
    spreadsheet.write_bytes(b'\xd0\xcf\x11\xe0')
    good = tmp_path / 'good.json'
    good.write_text('[{"question_text":"Largest ocean?","possible_answers":'
                    '[{"answer_text":"Pacific","is_correct":true},{"answer_text":"Atlantic"}]}]')

    code = _load_script().main(test['id'], section_id, [broken, spreadsheet, good], dry_run=True)

    assert code == 1
    out = capsys.readouterr().out
    assert f'Error importing {broken}: invalid JSON' in out
    assert f'Error importing {spreadsheet}: Unsupported file type' in out
    assert 'Total created questions: 1, skipped 0 (dry run)' in out
