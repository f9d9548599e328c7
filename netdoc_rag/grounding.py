"""Post-hoc grounding checks for generated answers.

Provides:
- extract_commands: CLI command lines found in free text (NVUE / NetQ / FRR / NCLU verbs).
- validate: compare the commands of an answer with the reference texts it was built from.

A command counts as grounded when its whitespace-normalized form occurs in a
normalized reference on token boundaries, or when it fills the <placeholders> of a
reference command (reported as a warning). A command that runs into trailing English
prose is judged by its longest grounded prefix. Everything else is suspicious. The
result is advisory; nothing is blocked here.
"""
import logging
import re
from typing import Iterable, List, Optional, Sequence

from netdoc_rag.schemas import ValidationResult

logger = logging.getLogger(__name__)

# verb prefixes of the CLIs covered by the docs; arguments run until CJK text, a comment, a backtick
# or a token closing a sentence (punctuation followed by whitespace or the end of the text)
_ARG = r"[^\s#`'\"\u3000-\u303f\u4e00-\u9fff\uff00-\uffef]"
_SENTENCE_END = _ARG + r"*[.,;:!?](?=\s|$)"
COMMAND_RE = re.compile(
    r"(?<![A-Za-z0-9_./-])"
    r"(?:sudo|nv|netq|vtysh|net[ \t]+(?:add|del|show|commit|pending|abort)|cl-[a-z][a-z0-9-]*)(?![A-Za-z0-9_./-])"
    r"(?:[ \t]+(?!" + _SENTENCE_END + r")" + _ARG + r"+)*"
    r"(?:[ \t]+" + _SENTENCE_END + r")?"
)
PLACEHOLDER_RE = re.compile(r"<[^<>\s]+>")
IPV4_RE = re.compile(r"(?<![\d.])(?:\d{1,3}\.){3}\d{1,3}(?:/\d{1,2})?(?![\d.])")
INTERFACE_RE = re.compile(r"^(?:swp\d+(?:s\d+)?|eth\d+|bond\d+|vlan\d+|br\d+|peerlink|lo)$")
NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
PROSE_WORD_RE = re.compile(r"[A-Za-z]+")
TRAILING_PUNCT = ".,;:!?)]}"


def normalize_command(text: str) -> str:
    """Collapse whitespace runs to one space and strip."""
    return " ".join(text.split())


def extract_commands(text: str) -> List[str]:
    """Return normalized command lines in order of appearance, without duplicates."""
    out: List[str] = []
    for m in COMMAND_RE.finditer(text or ""):
        cmd = normalize_command(m.group(0)).rstrip(TRAILING_PUNCT)
        if cmd and cmd not in out:
            out.append(cmd)
    return out


def _bounded(needle: str) -> re.Pattern:
    return re.compile(r"(?<![A-Za-z0-9_./-])" + re.escape(needle) + r"(?![A-Za-z0-9_./-])")


def _template(ref_cmd: str) -> Optional[re.Pattern]:
    if not PLACEHOLDER_RE.search(ref_cmd):
        return None
    parts = []
    for tok in ref_cmd.split(" "):
        parts.append(r"\S+" if PLACEHOLDER_RE.fullmatch(tok) else re.escape(tok))
    return re.compile(" ".join(parts))


def _parameters(cmd: str) -> List[str]:
    vals = []
    for tok in cmd.split(" ")[1:]:
        if NUMBER_RE.match(tok) or IPV4_RE.fullmatch(tok) or INTERFACE_RE.match(tok):
            vals.append(tok)
    return vals


def _in_any(value: str, refs: Iterable[str]) -> bool:
    pat = _bounded(value)
    return any(pat.search(r) for r in refs)


def _matching_template(cmd: str, ref_templates) -> Optional[str]:
    return next((rc for rc, t in ref_templates if t.fullmatch(cmd)), None)


def _split_prose_tail(cmd: str, ref_commands: Sequence[str], ref_templates) -> Optional[str]:
    """Longest token prefix of cmd that is a whole reference command, when the rest is plain words.

    Covers sentences such as "run nv config apply to save the changes" where the
    extracted span runs into the surrounding prose. The tail must hold at least two
    alphabetic words so a single invented argument is never dropped.
    """
    tokens = cmd.split(" ")
    for end in range(len(tokens) - 2, 1, -1):
        tail = tokens[end:]
        if not all(PROSE_WORD_RE.fullmatch(t) for t in tail):
            continue
        head = " ".join(tokens[:end])
        if head in ref_commands or _matching_template(head, ref_templates):
            return head
    return None


def validate(answer: str, references: Sequence[str]) -> ValidationResult:
    """Check every command in a generated answer against its references.

    Args:
        answer: Generated answer text.
        references: Reference texts the answer was generated from.

    Returns:
        ValidationResult: `is_valid` is False iff at least one command is absent from
            every reference. `warnings` lists soft signals: commands grounded only by
            filling reference placeholders, parameter values (numbers, IPs, interface
            names) not found in any reference, and IP addresses in the prose not found
            in any reference.
    """
    refs = [normalize_command(r) for r in references if r and r.strip()]
    ref_commands: List[str] = []
    ref_templates = []
    for r in references:
        for rc in extract_commands(r):
            ref_commands.append(rc)
            t = _template(rc)
            if t is not None:
                ref_templates.append((rc, t))

    suspicious: List[str] = []
    warnings: List[str] = []

    def warn(msg: str) -> None:
        if msg not in warnings:
            warnings.append(msg)

    commands = extract_commands(answer)
    for cmd in commands:
        if _in_any(cmd, refs):
            continue
        template = _matching_template(cmd, ref_templates)
        if template is None:
            head = _split_prose_tail(cmd, ref_commands, ref_templates)
            if head is None:
                suspicious.append(cmd)
                continue
            cmd = head
            if _in_any(cmd, refs):
                continue
            template = _matching_template(cmd, ref_templates)
        warn(f"command '{cmd}' fills placeholders of reference command '{template}'")
        for value in _parameters(cmd):
            if not _in_any(value, refs):
                warn(f"parameter '{value}' in '{cmd}' does not appear in any reference")

    prose = COMMAND_RE.sub(" ", answer or "")
    for ip in dict.fromkeys(IPV4_RE.findall(prose)):
        if not _in_any(ip, refs):
            warn(f"address '{ip}' does not appear in any reference")

    if suspicious:
        logger.info("Answer has %d ungrounded command(s): %s", len(suspicious), suspicious)
    return ValidationResult(is_valid=not suspicious, suspicious_commands=suspicious, warnings=warnings)
