import pytest

from mentalspace.storage import JsonFileStorage, MemoryStorage


def test_memory_storage_roundtrip():
    storage = MemoryStorage({'a': '1'})
    storage.set_item('b', '2')
    storage.remove_item('a')
    storage.remove_item('missing')
    assert storage.get_item('b') == '2'
    assert storage.keys() == ['b']


def test_memory_storage_requires_strings():
    with pytest.raises(TypeError):
        MemoryStorage().set_item('a', 1)


def test_json_file_storage_persists_between_instances(tmp_path):
    path = tmp_path / 'store' / 'local.json'
    JsonFileStorage(path).set_item('token', 'abc')

    reopened = JsonFileStorage(path)
    assert reopened.get_item('token') == 'abc'
    reopened.remove_item('token')
    assert JsonFileStorage(path).keys() == []


def test_json_file_storage_treats_corrupt_file_as_empty(tmp_path):
    path = tmp_path / 'local.json'
    path.write_text('{not json', encoding='utf-8')
    storage = JsonFileStorage(path)

    assert storage.get_item('anything') is None
    storage.set_item('k', 'v')
    assert storage.get_item('k') == 'v'
