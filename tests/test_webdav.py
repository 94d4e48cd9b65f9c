import requests

from screen_monitor.storage.webdav import LARGE_FILE_THRESHOLD, WebDavClient, join_path, parse_propfind


PROPFIND_XML = """<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/dav/Templates/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/dav/Templates/login%20button.png</d:href>
    <d:propstat><d:prop><d:resourcetype/></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/dav/Templates/readme.txt</d:href>
    <d:propstat><d:prop><d:resourcetype/></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/dav/Templates/old/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
</d:multistatus>
"""


def make_response(status=200, content=b"", url="http://dav.test/x"):
    response = requests.Response()
    response.status_code = status
    response._content = content
    response.url = url
    return response


class FakeSession:
    """Records calls and replays scripted responses or errors."""

    def __init__(self, get=(), put=(), propfind=()):
        self.auth = None
        self.calls = []
        self._scripts = {"GET": list(get), "PUT": list(put), "PROPFIND": list(propfind)}

    def _next(self, method, url):
        self.calls.append((method, url))
        if method == "MKCOL":
            return make_response(201)
        outcome = self._scripts[method].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def request(self, method, url, **kwargs):
        return self._next(method, url)

    def get(self, url, **kwargs):
        return self._next("GET", url)

    def put(self, url, **kwargs):
        return self._next("PUT", url)

    def close(self):
        pass


def make_client(session, **kwargs):
    client = WebDavClient("http://dav.test/", device_id="desk-1", retry_delay=0, **kwargs)
    client._session = session
    return client


def test_join_path():
    assert join_path("Monitor/upload/", "/desk-1", "", "20240101") == "/Monitor/upload/desk-1/20240101"
    assert join_path() == "/"


def test_parse_propfind_marks_directories():
    entries = parse_propfind(PROPFIND_XML)
    assert ("login button.png", False) in entries
    assert ("old", True) in entries


def test_list_directory_returns_only_image_files():
    session = FakeSession(propfind=[make_response(207, PROPFIND_XML.encode())])
    client = make_client(session)

    assert client.list_directory("Templates") == ["login button.png"]


def test_download_retries_then_succeeds():
    session = FakeSession(get=[
        requests.exceptions.ConnectionError("down"),
        make_response(503),
        make_response(200, b"{}"),
    ])
    client = make_client(session)

    assert client.download_file("Monitor", "config.json") == b"{}"
    assert [method for method, _ in session.calls] == ["GET", "GET", "GET"]
    assert session.calls[0][1] == "http://dav.test/Monitor/config.json"


def test_download_gives_up_with_empty_bytes():
    session = FakeSession(get=[requests.exceptions.Timeout("slow")] * 3)
    client = make_client(session)

    assert client.download_file("Monitor", "config.json") == b""


def test_upload_goes_under_device_folder(tmp_path):
    local = tmp_path / "20240101_080000_a.jpg"
    local.write_bytes(b"jpeg")
    session = FakeSession(put=[make_response(201)])
    client = make_client(session)

    assert client.upload_file("20240101", local.name, str(local))

    mkcols = [url for method, url in session.calls if method == "MKCOL"]
    assert mkcols[-1] == "http://dav.test/Monitor/upload/desk-1/20240101/"
    assert session.calls[-1] == ("PUT", "http://dav.test/Monitor/upload/desk-1/20240101/20240101_080000_a.jpg")


def test_large_upload_is_attempted_once(tmp_path):
    local = tmp_path / "big.jpg"
    with open(local, "wb") as f:
        f.truncate(LARGE_FILE_THRESHOLD + 1)
    session = FakeSession(put=[make_response(500), make_response(201)])
    client = make_client(session)

    assert not client.upload_file("20240101", "big.jpg", str(local))
    assert [method for method, _ in session.calls].count("PUT") == 1


def test_missing_local_file_is_not_uploaded(tmp_path):
    session = FakeSession()
    client = make_client(session)

    assert not client.upload_file("20240101", "gone.jpg", str(tmp_path / "gone.jpg"))
    assert session.calls == []
