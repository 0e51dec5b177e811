import unittest
from unittest import mock

import requests

from tools.github.api import PER_PAGE, list_issue_comments, post_issue_comment
from tools.github.types import GitHubConfig

CFG = GitHubConfig(token="secret", repository="mmtk/mmtk-core", api_root="https://api.example.invalid/")


def _resp(payload, status: int = 200) -> mock.Mock:
    r = mock.Mock()
    r.json.return_value = payload
    if status >= 400:
        r.raise_for_status.side_effect = requests.HTTPError(f"{status}")
    else:
        r.raise_for_status.return_value = None
    return r


class TestGitHubApi(unittest.TestCase):
    def test_comments_are_paginated(self) -> None:
        page1 = [{"body": str(i)} for i in range(PER_PAGE)]
        page2 = [{"body": "last"}]
        with mock.patch("tools.github.api.requests.get", side_effect=[_resp(page1), _resp(page2)]) as get:
            out = list_issue_comments(CFG, 7)
        self.assertEqual(PER_PAGE + 1, len(out))
        self.assertEqual("last", out[-1]["body"])
        url = get.call_args_list[0].args[0]
        self.assertEqual("https://api.example.invalid/repos/mmtk/mmtk-core/issues/7/comments", url)
        self.assertEqual(2, get.call_args_list[1].kwargs["params"]["page"])
        self.assertEqual("Bearer secret", get.call_args_list[0].kwargs["headers"]["Authorization"])

    def test_unexpected_payload(self) -> None:
        with mock.patch("tools.github.api.requests.get", return_value=_resp({"message": "x"})):
            with self.assertRaises(RuntimeError):
                list_issue_comments(CFG, 7)

    def test_post_comment(self) -> None:
        with mock.patch("tools.github.api.requests.post", return_value=_resp({"id": 1})) as post:
            self.assertEqual({"id": 1}, post_issue_comment(CFG, 7, "hello"))
        self.assertEqual({"body": "hello"}, post.call_args.kwargs["json"])

    def test_http_errors_raise(self) -> None:
        with mock.patch("tools.github.api.requests.get", return_value=_resp({}, status=404)):
            with self.assertRaises(requests.HTTPError):
                list_issue_comments(CFG, 7)


if __name__ == "__main__":
    unittest.main()
