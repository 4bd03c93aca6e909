import unittest

from fakes import FakeDrive, make_root

from drivefs.graph_client.errors import NotFoundError
from drivefs.objects.tree import get_children, get_item


class TestResolver(unittest.TestCase):
    def setUp(self) -> None:
        self.drive = FakeDrive()
        self.drive.add("/", "Documents", folder=True)
        self.drive.add("/Documents", "Work", folder=True)
        self.drive.add("/Documents/Work", "plan.txt", content=b"plan")
        self.drive.add("/", "readme.md", content=b"# hi")
        self.root = make_root(self.drive)

    def test_root_needs_no_remote_call(self) -> None:
        self.assertIs(get_item("/", self.root), self.root)
        self.assertEqual(self.drive.calls, [])

    def test_nested_path_fills_each_level_once(self) -> None:
        item = get_item("/Documents/Work/plan.txt", self.root)
        self.assertEqual(item.name, "plan.txt")
        self.assertEqual(
            self.drive.calls,
            [("list_children", "/"), ("list_children", "/Documents"), ("list_children", "/Documents/Work")],
        )

        self.assertIs(get_item("/Documents/Work/plan.txt", self.root), item)
        self.assertEqual(self.drive.count("list_children"), 3)

    def test_trailing_slash_is_ignored(self) -> None:
        self.assertEqual(get_item("/Documents/", self.root).path(), "/Documents")

    def test_missing_segment(self) -> None:
        with self.assertRaises(NotFoundError):
            get_item("/Documents/Nope", self.root)

    def test_file_has_no_children(self) -> None:
        with self.assertRaises(NotFoundError):
            get_item("/readme.md/inner", self.root)

    def test_get_children_by_path(self) -> None:
        children = get_children("/Documents", self.root)
        self.assertEqual(list(children), ["Work"])

    def test_get_children_of_file(self) -> None:
        with self.assertRaises(NotADirectoryError):
            get_children("/readme.md", self.root)


if __name__ == "__main__":
    unittest.main()
