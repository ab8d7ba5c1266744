"""Rewrite of Jira rendered HTML into planner rich text.

Jira renders descriptions and comments as HTML full of Jira-only markup:
``<font>`` colours, syntax-plugin code blocks, status icons, user-hover
mentions, permalinks to issues and comments, and attachment URLs. The
rewriter walks the document depth-first and turns those into the planner
equivalents. Embedded images are registered as attachment descriptors so
the attachment pool transfers them with the rest of the files.
"""

from __future__ import annotations

import datetime as dt
import logging
import posixpath
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit
from uuid import UUID, uuid4

from bs4 import BeautifulSoup, NavigableString, Tag
from PIL import ImageFile

from jira_migrator.core.exceptions import ImportCancelled
from jira_migrator.models.file_asset import FileAsset
from jira_migrator.models.issue import Issue, IssueComment
from jira_migrator.services.issues_import.entity import Attachment
from jira_migrator.services.issues_import.utils import internal_issue_path, parse_key

if TYPE_CHECKING:
    from jira_migrator.integrations.jira.client import JiraClient
    from jira_migrator.services.issues_import.mappers import IssueMapper

logger = logging.getLogger(__name__)

PROBE_CHUNK_SIZE = 1024


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _classes(node: Tag) -> list[str]:
    value = node.get("class") or []
    return value.split() if isinstance(value, str) else list(value)


def _text_lines(node: Tag) -> str:
    return "".join(f"{line}\n" for line in node.stripped_strings)


def _int(value: object) -> int:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return 0


def _replace_content(node: Tag, text: str) -> None:
    node.clear()
    node.append(NavigableString(text))


def probe_image_width(client: JiraClient, src: str) -> int:
    """Width of a remote image read from its header only; 0 when unknown."""
    parser = ImageFile.Parser()
    try:
        with client.stream(src) as response:
            for chunk in response.iter_bytes(PROBE_CHUNK_SIZE):
                parser.feed(chunk)
                if parser.image is not None:
                    return parser.image.size[0]
    except Exception as exc:  # noqa: BLE001
        logger.error("Fetch thumb image %s failed: %s", src, exc)
        return 0
    logger.error("Decode thumb image %s failed", src)
    return 0


def format_font_color(node: Tag) -> bool:
    if node.name != "font":
        return False
    color = node.get("color") or ""
    node.name = "span"
    node.attrs = {"style": f"color: {color}"}
    return True


def format_code(node: Tag) -> bool:
    if node.name != "div" or node.get("id") != "syntaxplugin":
        return False
    code = _text_lines(node)
    node.name = "pre"
    node.attrs = {}
    _replace_content(node, code)
    return True


class HtmlRewriter:
    def __init__(self, mapper: IssueMapper, issue: Issue | None = None, comment: IssueComment | None = None) -> None:
        self.mapper = mapper
        self.context = mapper.context
        self.issue = issue
        self.comment = comment

    def rewrite(self, src: str) -> str:
        soup = BeautifulSoup(src, "html.parser")
        self._walk(soup)
        return str(soup)

    def _walk(self, node: Tag) -> None:
        for child in list(node.children):
            if isinstance(child, Tag):
                self._visit(child)

    def _visit(self, node: Tag) -> None:
        if format_font_color(node):
            self._walk(node)
            return

        if format_code(node):
            return

        if node.name == "img" and "rendericon" in _classes(node):
            node.decompose()
            return

        if node.name == "a" and "user-hover" in _classes(node):
            self.replace_mention(node)
            return

        if self.replace_comment_link(node):
            return

        if self.replace_issue_link(node):
            return

        if node.name in ("a", "img"):
            self.replace_attachment_url(node)

        if not self.context.ignore_attachments and self.replace_image(node):
            return

        self._walk(node)

    def replace_mention(self, node: Tag) -> None:
        account = node.get("rel")
        if isinstance(account, list):
            account = " ".join(account)
        if not account:
            return
        try:
            user = self.context.users.get(account)
        except ImportCancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            self.context.log.error("Get user %s failed: %s", account, exc)
            return
        if user is None:
            return

        name = user.username or user.email or account
        node.name = "span"
        node.attrs = {
            "class": "mention",
            "data-type": "mention",
            "data-id": name,
            "data-label": user.email or "",
        }
        _replace_content(node, f"@{name}")

    def replace_comment_link(self, node: Tag) -> bool:
        # <a href=".../browse/PRJ-1?focusedCommentId=10&page=...#comment-10" class="external-link">
        if node.name != "a" or "external-link" not in _classes(node):
            return False
        href = node.get("href") or ""
        parts = urlsplit(href)
        comment_id = (parse_qs(parts.query).get("focusedCommentId") or [""])[0]
        if not comment_id:
            return False

        text = node.get_text().strip().removeprefix("#")
        comment = self.mapper.find_comment(comment_id)
        if comment is not None:
            node.attrs = {
                "data-type": "issue",
                "data-slug": str(comment.workspace_id),
                "data-project-identifier": str(comment.project_id),
                "data-current-issue-id": str(comment.issue_id),
                "data-comment-id": str(comment.id),
                "class": "special-link-mention",
                "contenteditable": "false",
            }
        else:
            project_key, sequence = parse_key(posixpath.basename(parts.path))
            node.attrs = {
                "data-type": "issue",
                "data-slug": str(self.context.workspace_id),
                "data-project-identifier": project_key,
                "data-current-issue-id": sequence,
                "data-comment-id": comment_id,
                "class": "special-link-mention",
                "contenteditable": "false",
                "data-original-url": href,
            }
        node.name = "span"
        _replace_content(node, f"#{text}")
        return True

    def replace_issue_link(self, node: Tag) -> bool:
        if node.name != "a":
            return False
        classes = _classes(node)
        if "issue-link" not in classes and "external-link" not in classes:
            return False

        parts = urlsplit(node.get("href") or "")
        if parts.netloc != self.context.client.host:
            return False
        segments = parts.path.strip("/").split("/")
        if len(segments) < 2 or segments[0] != "browse":
            return False

        issue_key = segments[1]
        project_key, sequence = parse_key(issue_key)
        if project_key != self.context.project_key:
            return False

        node.attrs = {
            "href": internal_issue_path(self.context.workspace_id, self.context.project_id, sequence),
            "target": "_blank",
            "rel": "noopener noreferrer nofollow",
        }
        _replace_content(node, issue_key)
        return True

    def replace_attachment_url(self, node: Tag) -> None:
        for attr in ("href", "src"):
            value = node.get(attr)
            if not value:
                continue
            segments = value.split("/")
            attachment_id = segments[-2] if len(segments) > 2 else value
            attachment = self.context.attachments.get_light(attachment_id)
            if attachment is not None and attachment.issue_attachment is not None:
                node[attr] = f"/uploads/{attachment.issue_attachment.asset_id}"
            return

    def replace_image(self, node: Tag) -> bool:
        """Turn ``span.image-wrap`` into a planner image and stage its blob."""
        if node.name != "span" or "image-wrap" not in _classes(node):
            return False

        attachment_id, file_name, width, full_url = "", "", 0, ""
        for child in node.find_all(True, recursive=False):
            if child.name == "a":
                file_name = child.get("title") or ""
                attachment_id = child.get("file-preview-id") or ""
                img = child.find("img", recursive=False)
                if img is not None:
                    width = _int(img.get("width")) or probe_image_width(self.context.client, img.get("src") or "")
                break
            if child.name == "img" and not attachment_id:
                # no thumbnail link around the image
                src = child.get("src") or ""
                width = _int(child.get("width")) or probe_image_width(self.context.client, src)
                path = urlsplit(src).path
                if "attachment" in path:
                    attachment_id = path.split("/")[-2]
                else:
                    full_url = src

        key = attachment_id or full_url
        if not key:
            return False

        existing = self.context.attachments.get_light(key)
        if existing is not None:
            self._render_image(node, existing.dst_asset_id, width)
            return True

        asset = FileAsset(id=uuid4(), name=file_name, size=0, attributes={}, created_at=utcnow())
        if self.issue is not None:
            asset.issue_id = self.issue.id
            asset.workspace_id = self.issue.workspace_id
        elif self.comment is not None:
            asset.comment_id = self.comment.id
            asset.workspace_id = self.comment.workspace_id
        else:
            self.context.log.warning("Image %s outside of an issue or a comment", key)
            return True

        if attachment_id:
            try:
                metadata = self.context.client.get_attachment(attachment_id)
            except ImportCancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                self.context.log.error("Get inline attachment %s metadata failed: %s", attachment_id, exc)
                return True
            metadata.setdefault("id", attachment_id)
            asset.size = int(metadata.get("size") or 0)
            asset.name = asset.name or metadata.get("filename") or ""
            descriptor = Attachment(dst_asset_id=asset.id, jira_key=self.mapper.key, jira_attachment=metadata, inline_asset=asset)
        else:
            asset.name = asset.name or full_url.rsplit("/", 1)[-1]
            descriptor = Attachment(dst_asset_id=asset.id, jira_key=self.mapper.key, full_url=full_url, inline_asset=asset)

        stored = self.mapper.register_attachment(key, descriptor)
        self._render_image(node, stored.dst_asset_id, width)
        return True

    @staticmethod
    def _render_image(node: Tag, asset_id: UUID, width: int) -> None:
        node.clear()
        node.name = "img"
        node.attrs = {"src": f"/api/file/{asset_id}"}
        if width > 0:
            node["style"] = f"width: {width}"


def rewrite_document(
    mapper: IssueMapper,
    src: str,
    *,
    issue: Issue | None = None,
    comment: IssueComment | None = None,
) -> str:
    """Rewritten ``src``; on any failure the original document is returned."""
    try:
        return HtmlRewriter(mapper, issue=issue, comment=comment).rewrite(src)
    except ImportCancelled:
        raise
    except Exception as exc:  # noqa: BLE001
        mapper.context.log.error("Rewrite of %s failed: %s", mapper.key, exc)
        return src
