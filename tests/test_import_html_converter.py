from __future__ import annotations

from uuid import uuid4

import pytest
from bs4 import BeautifulSoup

from conftest import JIRA_URL, FakeJiraClient, jira_issue
from jira_migrator.models.issue import Issue, IssueAttachment, IssueComment
from jira_migrator.models.user import User
from jira_migrator.services.issues_import.entity import Attachment
from jira_migrator.services.issues_import.html_converter import rewrite_document
from jira_migrator.services.issues_import.mappers import IssueMapper


@pytest.fixture
def mapper(make_context):  # noqa: ANN001
    client = FakeJiraClient(attachments={"600": {"id": "600", "filename": "shot.png", "size": 2048}})
    context = make_context(client)
    context.users.put("alice", User(id=uuid4(), username="alice", email="alice@example.com"))
    issue = Issue(
        id=uuid4(),
        name="Issue",
        sequence_id=1,
        project_id=context.project_id,
        workspace_id=context.workspace_id,
    )
    return IssueMapper(context, jira_issue("PRJ-1"), issue)


def _rewrite(mapper: IssueMapper, src: str, **kwargs) -> BeautifulSoup:  # noqa: ANN003
    kwargs.setdefault("issue", mapper.issue)
    return BeautifulSoup(rewrite_document(mapper, src, **kwargs), "html.parser")


def test_font_code_and_icons(mapper) -> None:  # noqa: ANN001
    soup = _rewrite(
        mapper,
        '<p><font color="#ff0000">red <b>bold</b></font>'
        '<img class="rendericon" src="/images/icons/link.png"></p>'
        '<div id="syntaxplugin"><div class="line">print(1)</div><div class="line">print(2)</div></div>',
    )

    span = soup.find("span")
    assert span["style"] == "color: #ff0000"
    assert span.find("b").get_text() == "bold"
    assert soup.find("img") is None
    assert soup.find("pre").get_text() == "print(1)\nprint(2)\n"


def test_user_mention(mapper) -> None:  # noqa: ANN001
    soup = _rewrite(mapper, '<a href="/secure/ViewProfile.jspa?name=alice" class="user-hover" rel="alice">Alice</a>')

    mention = soup.find("span", class_="mention")
    assert mention["data-id"] == "alice"
    assert mention["data-label"] == "alice@example.com"
    assert mention.get_text() == "@alice"


def test_same_project_issue_link_becomes_internal(mapper) -> None:  # noqa: ANN001
    context = mapper.context
    soup = _rewrite(
        mapper,
        f'<a class="issue-link" href="{JIRA_URL}/browse/PRJ-7">PRJ-7</a>'
        f'<a class="issue-link" href="{JIRA_URL}/browse/OTHER-7">OTHER-7</a>',
    )

    internal, foreign = soup.find_all("a")
    assert internal["href"] == f"/{context.workspace_id}/projects/{context.project_id}/issues/7"
    assert internal["target"] == "_blank"
    assert foreign["href"] == f"{JIRA_URL}/browse/OTHER-7"


def test_comment_permalinks(mapper) -> None:  # noqa: ANN001
    comment = IssueComment(
        id=uuid4(),
        original_id="301",
        issue_id=mapper.issue.id,
        project_id=mapper.issue.project_id,
        workspace_id=mapper.issue.workspace_id,
    )
    mapper.comments.put("301", comment)
    href = f"{JIRA_URL}/browse/PRJ-1?focusedCommentId={{id}}&page=com.atlassian#comment-{{id}}"

    soup = _rewrite(
        mapper,
        f'<a class="external-link" href="{href.format(id=301)}">#PRJ-1</a>'
        f'<a class="external-link" href="{href.format(id=999)}">#PRJ-1</a>',
    )

    known, unknown = soup.find_all("span", class_="special-link-mention")
    assert known["data-comment-id"] == str(comment.id)
    assert known.get_text() == "#PRJ-1"
    assert "data-original-url" not in known.attrs
    assert unknown["data-comment-id"] == "999"
    assert unknown["data-project-identifier"] == "PRJ"
    assert unknown["data-current-issue-id"] == "1"
    assert unknown["data-original-url"] == href.format(id=999)


def test_attachment_urls_point_to_uploads(mapper) -> None:  # noqa: ANN001
    asset_id = uuid4()
    mapper.context.attachments.put("500", Attachment(
        dst_asset_id=asset_id,
        jira_key="PRJ-1",
        jira_attachment={"id": "500"},
        issue_attachment=IssueAttachment(id=uuid4(), asset_id=asset_id, issue_id=mapper.issue.id),
    ))

    soup = _rewrite(mapper, f'<a href="{JIRA_URL}/secure/attachment/500/a.txt">a.txt</a>')

    assert soup.find("a")["href"] == f"/uploads/{asset_id}"


def test_inline_images_are_registered_once(mapper) -> None:  # noqa: ANN001
    src = '<span class="image-wrap"><img src="https://cdn.example.com/pic.png" width="120"></span>'

    first = _rewrite(mapper, src).find("img")
    second = _rewrite(mapper, src).find("img")

    descriptor = mapper.context.attachments.get_light("https://cdn.example.com/pic.png")
    assert descriptor is not None
    assert descriptor.inline_asset.issue_id == mapper.issue.id
    assert first["src"] == second["src"] == f"/api/file/{descriptor.dst_asset_id}"
    assert first["style"] == "width: 120"
    assert mapper.attachment_keys == ["https://cdn.example.com/pic.png"]


def test_thumbnail_of_jira_attachment_in_comment(mapper) -> None:  # noqa: ANN001
    comment = IssueComment(id=uuid4(), issue_id=mapper.issue.id, workspace_id=mapper.issue.workspace_id)
    src = (
        '<span class="image-wrap"><a file-preview-id="600" title="shot.png" href="/secure/attachment/600/shot.png">'
        '<img src="/secure/thumbnail/600/_thumb_600.png"></a></span>'
    )

    soup = _rewrite(mapper, src, issue=None, comment=comment)

    descriptor = mapper.context.attachments.get_light("600")
    assert descriptor.inline_asset.comment_id == comment.id
    assert descriptor.inline_asset.size == 2048
    assert descriptor.name == "shot.png"
    img = soup.find("img")
    assert img["src"] == f"/api/file/{descriptor.dst_asset_id}"
    # the fake client cannot stream the thumbnail, so no width is known
    assert "style" not in img.attrs


def test_images_untouched_when_attachments_ignored(make_context) -> None:  # noqa: ANN001
    context = make_context(FakeJiraClient(), ignore_attachments=True)
    issue = Issue(id=uuid4(), name="x", sequence_id=1, project_id=context.project_id, workspace_id=context.workspace_id)
    mapper = IssueMapper(context, jira_issue("PRJ-1"), issue)
    src = '<span class="image-wrap"><img src="https://cdn.example.com/pic.png" width="120"></span>'

    soup = _rewrite(mapper, src)

    assert soup.find("span", class_="image-wrap") is not None
    assert len(context.attachments) == 0


def test_failed_rewrite_returns_source(mapper, monkeypatch) -> None:  # noqa: ANN001
    from jira_migrator.services.issues_import import html_converter

    def broken(*_args, **_kwargs):  # noqa: ANN002, ANN003, ANN202
        raise ValueError("broken markup")

    monkeypatch.setattr(html_converter.HtmlRewriter, "rewrite", broken)
    assert rewrite_document(mapper, "<p>keep</p>", issue=mapper.issue) == "<p>keep</p>"
