"""Identifier helpers for diagnostics: snake_case table names -> class and model names."""
import re

_IRREGULAR = {
    "people": "person",
    "men": "man",
    "women": "woman",
    "children": "child",
    "mice": "mouse",
    "geese": "goose",
    "teeth": "tooth",
    "feet": "foot",
}

# Words that look plural but are not.
_UNCOUNTABLE = {
    "data", "equipment", "information", "metadata", "money", "news",
    "series", "sheep", "species", "status", "fish",
}

_SINGULAR_RULES = [
    (re.compile(r"(?i)(database)s$"), r"\1"),
    (re.compile(r"(?i)(quiz)zes$"), r"\1"),
    (re.compile(r"(?i)(m)ovies$"), r"\1ovie"),
    (re.compile(r"(?i)(analy|ba|diagno|parenthe|progno|synop|the)(sis|ses)$"), r"\1sis"),
    (re.compile(r"(?i)^(ax|test)(is|es)$"), r"\1is"),
    (re.compile(r"(?i)(octop|vir)(us|i)$"), r"\1us"),
    (re.compile(r"(?i)^(kni|wi|li)ves$"), r"\1fe"),
    (re.compile(r"(?i)(wol|hal|shel|sel|cal|lea|loa|thie|shea|dwar|whar)ves$"), r"\1f"),
    (re.compile(r"(?i)(her|potat|tomat|ech|vet)oes$"), r"\1o"),
    (re.compile(r"(?i)(matri|vert|ind)ices$"), r"\1ix"),
    (re.compile(r"(?i)([^aeiouy]|qu)ies$"), r"\1y"),
    (re.compile(r"(?i)(x|ch|ss|sh|zz)es$"), r"\1"),
    (re.compile(r"(?i)(alias|bus|status)(es)?$"), r"\1"),
    (re.compile(r"(?i)(us)es$"), r"\1"),
    # campus, axis: already singular
    (re.compile(r"(?i)(is|us)$"), r"\1"),
    (re.compile(r"(?i)([^s])s$"), r"\1"),
]


def camelize(name: str) -> str:
    """Convert a snake_case identifier to CamelCase.

    Only the first letter of each part is upper-cased, so existing capitals
    survive. Empty parts from doubled underscores are dropped.

    Examples:
        users -> Users
        user_profiles -> UserProfiles
        HTTP_logs -> HTTPLogs
    """
    return "".join(part[:1].upper() + part[1:] for part in str(name).split("_") if part)


def _singularize_word(word: str) -> str:
    lower = word.lower()
    if lower in _UNCOUNTABLE:
        return word
    if lower in _IRREGULAR:
        singular = _IRREGULAR[lower]
        return singular[:1].upper() + singular[1:] if word[:1].isupper() else singular
    for pattern, replacement in _SINGULAR_RULES:
        if pattern.search(word):
            return pattern.sub(replacement, word)
    return word


def singularize(name: str) -> str:
    """Singularize the last word of a CamelCase or snake_case name.

    Already-singular names come back unchanged.

    Examples:
        Users -> User
        UserProfiles -> UserProfile
        Categories -> Category
        People -> Person
        Address -> Address
        Analyses -> Analysis
        Campus -> Campus
        order_items -> order_item
    """
    if not name:
        return name
    if "_" in name:
        head, _, last = name.rpartition("_")
        return f"{head}_{_singularize_word(last)}"
    words = re.findall(r"[A-Z]+(?![a-z])|[A-Z]?[a-z0-9]+", name)
    if not words:
        return name
    last = words[-1]
    return name[: len(name) - len(last)] + _singularize_word(last)


def table_title(table: str) -> str:
    """CamelCase form of a table name, ignoring any schema qualifier.

    Examples:
        users -> Users
        public.order_items -> OrderItems
    """
    return camelize(str(table).rpartition(".")[2])


def model_name(table: str) -> str:
    """Conventional model class name for a table.

    Examples:
        users -> User
        order_items -> OrderItem
        public.categories -> Category
    """
    return singularize(table_title(table))
