"""Customer matching: cluster contracts into customer identities.

Rules run in a fixed priority order. Each rule groups contracts on an exact-match key and
unions every pair inside a group; a match event is logged only when the union merged two
previously separate clusters. Every contract ends up in exactly one cluster, and each
cluster gets a fresh synthetic customer id on every run.
"""

from collections import Counter
from dataclasses import dataclass

import polars as pl

from nfr_engine import config
from nfr_engine.grouping import group_by_key
from nfr_engine.store import MATCH_EVENT_SCHEMA, ContractStore
from nfr_engine.union_find import UnionFind

VERY_HIGH: str = 'Very High'
HIGH: str = 'High'
MODERATE: str = 'Moderate'

SORTCODE_PATTERN: str = r'^\d{6}$'
ACCOUNT_PATTERN: str = r'^\d{6,8}$'

IDENTITY_COLUMNS: list[str] = [
    'contract_id',
    'sortname',
    'phone',
    'postcode',
    'bank_sortcode',
    'account_number',
]


@dataclass(frozen=True)
class MatchRule:
    """One step of the matching cascade: each key expression yields a group key or null."""

    name: str
    confidence: str
    keys: tuple[pl.Expr, ...]


@dataclass(slots=True)
class MatchResult:
    """Clusters, per-contract customer assignments, and the pairwise match events."""

    clusters: dict[str, list[str]]
    assignments: pl.DataFrame
    events: pl.DataFrame

    def stats(self) -> dict[str, object]:
        return {
            'total_contracts': self.assignments.height,
            'unique_customers': len(self.clusters),
            'match_pairs_by_method': dict(Counter(self.events['rule_name'].to_list())),
        }


def _present(col: str) -> pl.Expr:
    c = pl.col(col)
    return c.is_not_null() & (c.str.strip_chars().str.len_chars() > 0)


def _key(*parts: pl.Expr) -> pl.Expr:
    # concat_str is null when any part is null, which drops the row from the rule
    return pl.concat_str(list(parts), separator='|')


def prepare_identity(contracts: pl.LazyFrame | pl.DataFrame) -> pl.LazyFrame:
    """Derive normalized identity columns used by the rule keys.

    Rows are ordered by contract_id so grouping, event order and customer numbering do not
    depend on the physical row order of the store.

    Returns:
        LazyFrame with contract_id plus _name, _surname, _firstname_prefix, _phone,
        _postcode, _sortcode, _account, _bank_raw and _name_count.
    """
    sortname = pl.col('sortname')
    phone = pl.col('phone').str.strip_chars()
    sortcode = pl.col('bank_sortcode').str.replace_all(r'[\s-]', '')
    account = pl.col('account_number').str.replace_all(r'[\s-]', '')

    return (
        contracts.lazy()
        .select(IDENTITY_COLUMNS)
        .with_columns([pl.col(c).cast(pl.Utf8) for c in IDENTITY_COLUMNS])
        .sort('contract_id')
        .with_columns(
            pl.when(_present('sortname')).then(sortname.str.to_uppercase()).alias('_name'),
            sortname.str.extract(r'^\s*(\S+)', 1).str.to_uppercase().alias('_surname'),
            sortname.str.extract(r'^\s*\S+\s+(\S+)', 1).str.slice(0, 3).str.to_uppercase().alias('_firstname_prefix'),
            pl.when(_present('phone') & ~phone.is_in(config.PLACEHOLDER_PHONES)).then(phone).alias('_phone'),
            pl.when(_present('postcode')).then(pl.col('postcode').str.to_uppercase()).alias('_postcode'),
            pl.when(sortcode.str.contains(SORTCODE_PATTERN)).then(sortcode).alias('_sortcode'),
            pl.when(account.str.contains(ACCOUNT_PATTERN)).then(account).alias('_account'),
            pl.when(_present('bank_sortcode') & _present('account_number'))
            .then(_key(pl.col('bank_sortcode'), pl.col('account_number')))
            .alias('_bank_raw'),
        )
        .with_columns(
            pl.when(pl.col('_name').is_not_null())
            .then(pl.col('contract_id').count().over('_name'))
            .alias('_name_count'),
        )
    )


def build_match_rules(common_name_threshold: int = config.COMMON_NAME_THRESHOLD) -> list[MatchRule]:
    """The matching cascade in priority order, keyed on prepare_identity columns."""
    name = pl.col('_name')
    surname = pl.col('_surname')
    prefix = pl.col('_firstname_prefix')
    phone = pl.col('_phone')
    postcode = pl.col('_postcode')

    return [
        MatchRule(
            name='Bank Account (No Name)',
            confidence=VERY_HIGH,
            keys=(_key(pl.col('_sortcode'), pl.col('_account')),),
        ),
        MatchRule(
            name='Bank Account + Surname',
            confidence=VERY_HIGH,
            keys=(_key(pl.col('_bank_raw'), surname),),
        ),
        MatchRule(
            name='Name + Phone',
            confidence=HIGH,
            keys=(_key(name, phone),),
        ),
        MatchRule(
            name='Name + Postcode',
            confidence=HIGH,
            keys=(
                pl.when(pl.col('_name_count') < common_name_threshold).then(_key(name, postcode)),
            ),
        ),
        MatchRule(
            name='Surname + Phone + Postcode',
            confidence=MODERATE,
            keys=(_key(surname, phone, postcode),),
        ),
        MatchRule(
            name='Fuzzy Name + Phone/Postcode',
            confidence=MODERATE,
            keys=(
                _key(surname, prefix, pl.lit('P'), phone),
                _key(surname, prefix, pl.lit('PC'), postcode),
            ),
        ),
    ]


MATCH_RULES: list[MatchRule] = build_match_rules()


def resolve(
    contracts: pl.LazyFrame | pl.DataFrame,
    rules: list[MatchRule] | None = None,
) -> MatchResult:
    """Cluster contracts into customers by running the rule cascade over a union-find forest.

    Args:
        contracts: Contract rows with contract_id and the raw identity columns.
        rules: Cascade to run; defaults to MATCH_RULES.

    Returns:
        MatchResult with clusters keyed by the new customer ids, one assignment row per
        contract, and one event per union that merged two clusters.
    """
    rules = rules if rules is not None else MATCH_RULES
    identity = prepare_identity(contracts).collect()

    uf = UnionFind()
    for contract_id in identity['contract_id'].to_list():
        uf.find(contract_id)

    pairs: list[tuple[str, str, str, str]] = []
    for rule in rules:
        for members in group_by_key(identity, list(rule.keys)).values():
            if len(members) < 2:
                continue
            for i, left in enumerate(members):
                for right in members[i + 1:]:
                    if uf.union(left, right):
                        pairs.append((left, right, rule.name, rule.confidence))

    clusters: dict[str, list[str]] = {}
    customer_by_root: dict[str, str] = {}
    for n, (root, members) in enumerate(uf.groups().items()):
        customer_id = f'{config.CUSTOMER_ID_PREFIX}{n}'
        customer_by_root[root] = customer_id
        clusters[customer_id] = members

    assignments = pl.DataFrame(
        [
            (contract_id, customer_id)
            for customer_id, members in clusters.items()
            for contract_id in members
        ],
        schema={'contract_id': pl.Utf8, 'customer_id': pl.Utf8},
        orient='row',
    )
    events = pl.DataFrame(
        [(a, b, rule_name, tier, customer_by_root[uf.find(a)]) for a, b, rule_name, tier in pairs],
        schema=MATCH_EVENT_SCHEMA,
        orient='row',
    )
    return MatchResult(clusters=clusters, assignments=assignments, events=events)


def run_matching(store: ContractStore) -> dict[str, object]:
    """Resolve every stored contract and write customer ids plus the event log back in one commit."""
    result = resolve(store.read_contracts())
    store.write_matching(result.assignments, result.events)
    return result.stats()
