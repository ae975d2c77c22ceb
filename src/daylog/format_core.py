import re
import unicodedata

BOM = '\ufeff'
FENCE = '```'

_LEADING_CHECKBOX = re.compile(r'^\s*(?:[-*+]\s*)?\[[ xX]?\]\s*')
_NOTE_HEADING = re.compile(r'^(\s*)#{1,6}[ \t]*')
# a note line that looks like "- [ ] x" would read back as a step
_NOTE_CHECKBOX = re.compile(r'^( *)-\s*\[[^\]]?\]\s*')
_NOTES_SHALLOW_HEADING = re.compile(r'^#{1,2}(?=\s|$)')


def normalize(raw: str, indent_width: int = 2) -> str:
    """Strip one leading BOM, unify line endings to LF, expand each tab."""
    if not raw:
        return ""
    if raw.startswith(BOM):
        raw = raw[1:]
    text = raw.replace('\r\n', '\n').replace('\r', '\n')
    return text.replace('\t', ' ' * indent_width)


def is_fence(line: str) -> bool:
    return line.lstrip().startswith(FENCE)


class FormatCore:
    @staticmethod
    def strip_control_chars(text: str) -> str:
        return ''.join(ch for ch in text if unicodedata.category(ch) != 'Cc')

    @classmethod
    def clean_title(cls, text) -> str:
        """
        Single-line task title.
        Line breaks collapse to spaces, other control chars are dropped and any
        leading checkbox syntax typed by the user ("- [ ] ", "[x]") is removed.
        """
        if not text:
            return ""
        text = re.sub(r'[\r\n]+', ' ', str(text))
        text = cls.strip_control_chars(text)
        prev = None
        while prev != text:
            prev = text
            text = _LEADING_CHECKBOX.sub('', text, count=1)
        return text.strip()

    @staticmethod
    def strip_note_headings(text) -> list:
        """
        Note body lines with heading markers removed.
        "## Plan" becomes "Plan" and "- [ ] milk" becomes "- milk"; lines
        inside ``` fences are left alone.
        """
        if not text:
            return []
        lines = normalize(str(text)).split('\n')
        out = []
        in_fence = False
        for line in lines:
            if is_fence(line):
                in_fence = not in_fence
                out.append(line.rstrip())
                continue
            if not in_fence:
                line = _NOTE_HEADING.sub(r'\1', line, count=1)
                line = _NOTE_CHECKBOX.sub(r'\1- ', line, count=1)
            line = line.rstrip()
            # runs of blank lines collapse to one, same as the parser does
            if not line and out and not out[-1]:
                continue
            out.append(line)

        return FormatCore.trim_blank_edges(out)

    @staticmethod
    def coerce_notes_headings(lines) -> list:
        """'#' and '##' headings become '###' outside fences; deeper levels stay."""
        out = []
        in_fence = False
        for line in lines:
            if is_fence(line):
                in_fence = not in_fence
                out.append(line)
                continue
            if not in_fence:
                line = _NOTES_SHALLOW_HEADING.sub('###', line, count=1)
            out.append(line)
        return out

    @staticmethod
    def trim_blank_edges(lines) -> list:
        start, end = 0, len(lines)
        while start < end and not lines[start].strip():
            start += 1
        while end > start and not lines[end - 1].strip():
            end -= 1
        return list(lines[start:end])
