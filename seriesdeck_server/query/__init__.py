from .parser import (
	ParseError, Namespace, MatchMode, FilterPredicate, SortSpec,
	parse_predicate, parse_predicates, parse_sort
)
from .executor import QueryExecutor, QueryResult, filter_rows, sort_rows
from .autocomplete import KeyCatalog, collect_keys
