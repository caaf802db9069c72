import pytest

import catalog_query as cq


@pytest.fixture
def conn(tmp_path, sample_dbs):
    files_db = tmp_path / "files_in_chat.clean.db"
    group_db = tmp_path / "group_info.clean.db"
    files_db.write_bytes(sample_dbs[0])
    group_db.write_bytes(sample_dbs[1])

    c = cq.connect_db(files_db, group_db)
    try:
        yield c
    finally:
        c.close()


def test_connect_db_missing(tmp_path):
    with pytest.raises(SystemExit):
        cq.connect_db(tmp_path / "none.db")


def test_connect_db_missing_group_db(tmp_path, sample_dbs):
    files_db = tmp_path / "files.db"
    files_db.write_bytes(sample_dbs[0])
    with pytest.raises(SystemExit):
        cq.connect_db(files_db, tmp_path / "none.db")


def test_list_groups(conn, capsys):
    cq.list_groups(conn)
    out = capsys.readouterr().out

    lines = out.splitlines()[2:]
    assert len(lines) == 4
    assert lines[0].startswith("1001")
    assert "Family" in lines[0]
    assert "2024-03-10" in lines[0]


def test_list_groups_without_group_db(tmp_path, sample_dbs, capsys):
    files_db = tmp_path / "files.db"
    files_db.write_bytes(sample_dbs[0])
    c = cq.connect_db(files_db)
    try:
        cq.list_groups(c)
    finally:
        c.close()
    assert "1001" in capsys.readouterr().out


def test_show_group_files(conn, capsys):
    cq.show_group_files(conn, "2002")
    out = capsys.readouterr().out
    assert out.index("c.jpg") < out.index("gone.jpg")

    cq.show_group_files(conn, "9999")
    assert "No files for group 9999" in capsys.readouterr().out


def test_list_orphan_files(conn, capsys):
    cq.list_orphan_files(conn)
    out = capsys.readouterr().out

    assert "d.jpg" in out
    assert "4004" in out
    # Private chats are not group files
    assert "e.jpg" not in out
