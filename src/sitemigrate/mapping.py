"""
Environment-to-environment rewrite rules.

The rule table is an explicit allow-list. Domain and bucket names are
deployment configuration, so a pair that is not listed here cannot be
migrated even if its rules look derivable.

Rules are applied in list order and each rule sees the output of the
previous one. Several pairs rely on that: prod -> pprd first turns every
".wfu.edu" into ".pprd.wfu.edu", then repairs the doubled and prefixed
hosts that the broad rule produced.
"""

from __future__ import annotations

import logging

from sitemigrate.exceptions import InvalidCustomRuleError, UnsupportedPathError
from sitemigrate.models import Environment, RewriteRule

logger = logging.getLogger(__name__)

DEV = Environment.DEV
UAT = Environment.UAT
PPRD = Environment.PPRD
PROD = Environment.PROD

_RulePairs = tuple[tuple[str, str], ...]


def _from_prod(env: str) -> tuple[_RulePairs, _RulePairs]:
    # Broad suffix rewrite, then undo the doubled subdomain, the www.
    # prefix and the aws. hosts it mangled. The doubled-label repair has no
    # leading dot so that a bare "{env}.wfu.edu" survives a second pass.
    # The apex host has no leading dot, so it needs its own scheme-qualified
    # rules.
    urls = (
        (".wfu.edu", f".{env}.wfu.edu"),
        (f"{env}.{env}.wfu.edu", f"{env}.wfu.edu"),
        (f"www.{env}.wfu.edu", f"{env}.wfu.edu"),
        (f"aws.{env}.wfu.edu", "aws.wfu.edu"),
        ("https://wfu.edu", f"https://{env}.wfu.edu"),
        ("http://wfu.edu", f"http://{env}.wfu.edu"),
    )
    storage = (
        ("wordpress-prod-us", f"wordpress-{env}-us"),
        ("prod.wp.cdn.aws.wfu.edu", f"{env}.wp.cdn.aws.wfu.edu"),
    )
    return urls, storage


def _to_prod(env: str, bucket_host: bool) -> tuple[_RulePairs, _RulePairs]:
    urls = (
        (f".{env}.wfu.edu", ".wfu.edu"),
        (f"{env}.wfu.edu", "www.wfu.edu"),
    )
    storage: _RulePairs = (
        (f"wordpress-{env}-us", "wordpress-prod-us"),
        (f"{env}.wp.cdn.aws.wfu.edu", "prod.wp.cdn.aws.wfu.edu"),
    )
    if bucket_host:
        storage = (
            (
                f"wfu-cer-wordpress-{env}-us-east-1.s3.amazonaws.com",
                "wfu-cer-wordpress-prod-us-east-1.s3.amazonaws.com",
            ),
        ) + storage
    return urls, storage


def _lateral(source: str, target: str, bucket_host: bool) -> tuple[_RulePairs, _RulePairs]:
    urls = (
        (f".{source}.wfu.edu", f".{target}.wfu.edu"),
        (f"{source}.wfu.edu", f"{target}.wfu.edu"),
    )
    storage: _RulePairs = (
        (f"wordpress-{source}-us", f"wordpress-{target}-us"),
        (f"{source}.wp.cdn.aws.wfu.edu", f"{target}.wp.cdn.aws.wfu.edu"),
    )
    if bucket_host:
        storage = (
            (
                f"wfu-cer-wordpress-{source}-us-east-1.s3.amazonaws.com",
                f"wfu-cer-wordpress-{target}-us-east-1.s3.amazonaws.com",
            ),
        ) + storage
    return urls, storage


RULE_TABLE: dict[tuple[Environment, Environment], tuple[_RulePairs, _RulePairs]] = {
    (PROD, PPRD): _from_prod("pprd"),
    (PPRD, PROD): _to_prod("pprd", bucket_host=False),
    (UAT, DEV): _lateral("uat", "dev", bucket_host=False),
    (DEV, UAT): _lateral("dev", "uat", bucket_host=False),
    (PROD, DEV): _from_prod("dev"),
    (PROD, UAT): _from_prod("uat"),
    (DEV, PROD): _to_prod("dev", bucket_host=True),
    (UAT, PROD): _to_prod("uat", bucket_host=True),
    (PPRD, DEV): _lateral("pprd", "dev", bucket_host=False),
    (DEV, PPRD): _lateral("dev", "pprd", bucket_host=True),
    (PPRD, UAT): _lateral("pprd", "uat", bucket_host=False),
    (UAT, PPRD): _lateral("uat", "pprd", bucket_host=True),
}


def parse_custom_rule(raw: str) -> RewriteRule:
    """
    Parse an operator-supplied "source:target" rewrite.

    Exactly one ':' is allowed and neither side may be empty, so URLs with a
    scheme ("https://...") are rejected.

    Raises:
        InvalidCustomRuleError: If the value is malformed.
    """
    parts = raw.split(":")
    if len(parts) != 2:
        raise InvalidCustomRuleError(raw)
    match, replacement = (part.strip() for part in parts)
    if not match or not replacement:
        raise InvalidCustomRuleError(raw)
    return RewriteRule(match=match, replacement=replacement, kind="custom")


class EnvironmentMappingResolver:
    """
    Resolves the ordered rewrite rules for a migration path.

    Pure lookup with no side effects. A custom table can be injected for
    tests; the default is RULE_TABLE.
    """

    def __init__(
        self,
        table: dict[tuple[Environment, Environment], tuple[_RulePairs, _RulePairs]] | None = None,
    ) -> None:
        self._table = RULE_TABLE if table is None else table

    def is_supported(self, source: Environment, target: Environment) -> bool:
        return (source, target) in self._table

    def supported_paths(self) -> list[tuple[Environment, Environment]]:
        return list(self._table)

    def resolve(
        self,
        source: Environment,
        target: Environment,
        custom_rule: RewriteRule | None = None,
    ) -> list[RewriteRule]:
        """
        Get the rules for a source/target pair.

        Args:
            source: Environment the data comes from.
            target: Environment the data is going to.
            custom_rule: Optional operator rule, applied last.

        Returns:
            URL rules, then storage rules, then the custom rule.

        Raises:
            UnsupportedPathError: If the pair is not in the allow-list.
        """
        try:
            urls, storage = self._table[(source, target)]
        except KeyError:
            raise UnsupportedPathError(source.value, target.value) from None

        rules = [RewriteRule(match, replacement, kind="url") for match, replacement in urls]
        rules.extend(
            RewriteRule(match, replacement, kind="storage") for match, replacement in storage
        )
        if custom_rule is not None:
            rules.append(custom_rule)

        logger.debug(
            "Resolved %d rewrite rules for %s -> %s",
            len(rules),
            source.value,
            target.value,
        )
        return rules


__all__ = [
    "EnvironmentMappingResolver",
    "RULE_TABLE",
    "parse_custom_rule",
]
