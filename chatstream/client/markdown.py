import mistune


class _ChatRenderer(mistune.HTMLRenderer):
    """Renders links as action buttons opening in a new tab."""

    def link(self, text: str, url: str, title=None) -> str:
        href = self.safe_url(url)
        return (
            f'<a href="{href}" class="chat-btn-action" '
            f'target="_blank" rel="noopener noreferrer">{text}</a>'
        )


_markdown = mistune.create_markdown(
    renderer=_ChatRenderer(escape=True),
    plugins=["url", "strikethrough", "table"],
)


def render_markdown(text: str) -> str:
    """Markdown to HTML. Raw HTML in the answer is escaped, never passed through."""
    if not text:
        return ""
    return _markdown(text).strip()
