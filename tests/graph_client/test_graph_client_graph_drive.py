import json
import unittest
from unittest.mock import Mock

from drivefs.graph_client.errors import GraphAPIError, NotFoundError
from drivefs.graph_client.graph_drive import (
    GraphDrive,
    children_path,
    content_path,
    new_content_path,
)

API = "https://graph.example/v1.0"


def make_response(status=200, payload=None, content=None, reason="OK"):
    response = Mock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.reason = reason
    if payload is not None:
        response.json.return_value = payload
        response.content = json.dumps(payload).encode()
    else:
        response.json.side_effect = ValueError("no json")
        response.content = content or b""
    return response


class TestPathHelpers(unittest.TestCase):
    def test_children_path(self) -> None:
        self.assertEqual(children_path("/"), "/me/drive/root/children")
        self.assertEqual(children_path("/Documents/Work/"), "/me/drive/root:/Documents/Work:/children")
        self.assertEqual(children_path("/My Files"), "/me/drive/root:/My%20Files:/children")

    def test_content_paths(self) -> None:
        self.assertEqual(content_path("ABC"), "/me/drive/items/ABC/content")
        self.assertEqual(new_content_path("P1", "a b.txt"), "/me/drive/items/P1:/a%20b.txt:/content")


class TestGraphDrive(unittest.TestCase):
    def setUp(self) -> None:
        self.auth = Mock()
        self.auth.token.return_value = "TOKEN"
        self.session = Mock()
        self.drive = GraphDrive(self.auth, api_root=API, session=self.session, timeout=5)

    def test_requires_auth(self) -> None:
        with self.assertRaises(ValueError):
            GraphDrive(None)

    def test_request_carries_bearer_token(self) -> None:
        self.session.request.return_value = make_response(content=b"data")
        self.assertEqual(self.drive.fetch_content("F1"), b"data")

        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("GET", API + "/me/drive/items/F1/content"))
        self.assertEqual(kwargs["headers"]["Authorization"], "bearer TOKEN")
        self.assertEqual(kwargs["timeout"], 5)

    def test_list_children_follows_pages(self) -> None:
        self.session.request.side_effect = [
            make_response(payload={"value": [{"name": "a"}], "@odata.nextLink": API + "/next?page=2"}),
            make_response(payload={"value": [{"name": "b"}]}),
        ]
        items = self.drive.list_children("/")
        self.assertEqual([i["name"] for i in items], ["a", "b"])
        self.assertEqual(self.session.request.call_args_list[1].args[1], API + "/next?page=2")

    def test_not_found_maps_to_not_found_error(self) -> None:
        self.session.request.return_value = make_response(
            status=404, payload={"error": {"message": "Item not found"}}, reason="Not Found")
        with self.assertRaises(NotFoundError) as ctx:
            self.drive.list_children("/missing")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_server_error(self) -> None:
        self.session.request.return_value = make_response(status=503, reason="Unavailable")
        with self.assertRaises(GraphAPIError) as ctx:
            self.drive.delete_item("X")
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertNotIsInstance(ctx.exception, NotFoundError)

    def test_create_folder(self) -> None:
        self.session.request.return_value = make_response(payload={"id": "N", "name": "New", "folder": {}})
        data = self.drive.create_item("/Documents", "New")

        self.assertEqual(data["id"], "N")
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("POST", API + "/me/drive/root:/Documents:/children"))
        self.assertEqual(kwargs["json"]["name"], "New")
        self.assertEqual(kwargs["json"]["folder"], {})

    def test_upload_existing_item(self) -> None:
        self.session.request.return_value = make_response(payload={"id": "F1", "size": 3})
        self.drive.upload_content(b"abc", item_id="F1")
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("PUT", API + "/me/drive/items/F1/content"))
        self.assertEqual(kwargs["data"], b"abc")

    def test_upload_new_item(self) -> None:
        self.session.request.return_value = make_response(payload={"id": "F2", "size": 3})
        data = self.drive.upload_content(b"abc", parent_id="P1", name="new.txt")
        self.assertEqual(data["id"], "F2")
        self.assertEqual(self.session.request.call_args.args[1], API + "/me/drive/items/P1:/new.txt:/content")

    def test_upload_needs_a_target(self) -> None:
        with self.assertRaises(ValueError):
            self.drive.upload_content(b"abc", parent_id="P1")


if __name__ == "__main__":
    unittest.main()
