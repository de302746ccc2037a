import logging
from pathlib import Path
from typing import List, Union

from src.domain.exceptions import RuleParseException
from src.domain.models import SelectionRule

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"
MAX_ORG_RULE_TOKENS = 3


def parse_rule(line: str, line_number: int) -> SelectionRule:
    """
    Parses one ``owner/repo`` or ``org [include] [exclude]`` line.

    Raises:
        RuleParseException: If the line has the wrong shape.
    """
    tokens = line.split()

    if "/" in tokens[0]:
        if len(tokens) > 1:
            raise RuleParseException(line_number, line, "filters are not allowed after owner/repo")
        owner, _, repo = tokens[0].partition("/")
        if not owner or not repo or "/" in repo:
            raise RuleParseException(line_number, line, "expected owner/repo")
        return SelectionRule(owner=owner, repo=repo, line_number=line_number)

    if len(tokens) > MAX_ORG_RULE_TOKENS:
        raise RuleParseException(line_number, line, "expected 'org [include] [exclude]'")

    include = tokens[1] if len(tokens) > 1 else None
    exclude = tokens[2] if len(tokens) > 2 else None
    return SelectionRule(owner=tokens[0], include=include, exclude=exclude, line_number=line_number)


def parse_rules(text: str) -> List[SelectionRule]:
    rules = []
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            continue
        rules.append(parse_rule(line, line_number))
    return rules


def load_rules(path: Union[str, Path]) -> List[SelectionRule]:
    """Reads the rules file once, in order."""
    rules = parse_rules(Path(path).read_text(encoding="utf-8"))
    logger.info(f"Loaded {len(rules)} selection rules from {path}.")
    return rules
