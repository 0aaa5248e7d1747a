"""
Exclusion handling (hidden top-level entries + configured relative paths)

Configured entries follow `find -path` semantics relative to the upper root:
"*" and "?" are wildcards that also match "/", and an entry excludes the
path itself and everything below it.
"""
import re


def _compile_pattern(raw: str):
    """Compile one configured exclusion into a regex"""
    p = raw.strip()
    if p.startswith("./"):
        p = p[2:]
    p = p.rstrip("/")
    if not p or p == ".":
        return None
    escaped = re.escape(p)
    escaped = escaped.replace(r"\*", ".*")
    escaped = escaped.replace(r"\?", ".")
    try:
        return re.compile("^" + escaped + r"(/.*)?$")
    except re.error:
        return None


def compile_exclusions(paths: list[str]) -> list:
    """Compile the configured exclusion list"""
    patterns = []
    for raw in paths or []:
        c = _compile_pattern(raw)
        if c:
            patterns.append(c)
    return patterns


def is_hidden_top_level(rel_path: str) -> bool:
    return rel_path.split("/", 1)[0].startswith(".")


def is_excluded(rel_path: str, patterns: list) -> bool:
    """Check if a relative path is hidden at top level or matches an exclusion"""
    norm = rel_path.replace("\\", "/")
    if is_hidden_top_level(norm):
        return True
    return any(p.match(norm) for p in patterns)


def tar_exclude_args(paths: list[str]) -> list[str]:
    """
    GNU tar arguments excluding the same entries as is_excluded().
    Patterns are anchored, so ".*" only hits names whose first component
    is hidden.
    """
    args = ["--anchored", "--exclude", ".*"]
    for raw in paths or []:
        p = raw.strip()
        if p.startswith("./"):
            p = p[2:]
        p = p.rstrip("/")
        if not p or p == ".":
            continue
        args += ["--exclude", p, "--exclude", f"{p}/*"]
    return args
