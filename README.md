# cratewarden

cratewarden is a library for checking the packages ("crates") of a
dependency graph against a policy. It does two jobs:

- **Sources** (`cratewarden.sources`): checks where each crate comes from,
  a registry or a git repository, against the registries, repositories,
  organisations and private hosts you allow, and optionally against a
  minimum git specification.
- **Licenses** (`cratewarden.gather`): works out the SPDX license
  expression of each crate, from your clarifications, from the crate's
  `license` field, or from its `LICENSE*` files.

Findings are `Diagnostic` objects (severity, code, message, labels, notes)
collected into `Pack`s. Labels point at byte ranges of texts kept in a
`Files` store.

The package has no third-party dependencies.

## Installation

```
pip install cratewarden
```

## Checking sources

```python
from cratewarden.diag import Files, Spanned
from cratewarden.krates import CheckCtx, Krate, KrateSpans, Source
from cratewarden.sources import Config, check

files = Files()
cfg_id = files.add("deny.toml", "unknown-git = 'deny'\n")

config = Config.from_mapping({
    "unknown-git": "deny",
    "allow-git": ["https://gitlab.com/some-group/some-repo"],
    "allow-org": {"github": ["my-org"]},
    "required-git-spec": "tag",
})
valid, problems = config.validate(cfg_id)   # problems: list of Diagnostic

krates = [
    Krate("serde", "1.0.0",
          Source.parse("registry+https://github.com/rust-lang/crates.io-index")),
    Krate("tool", "0.3.0",
          Source.parse("git+https://github.com/my-org/tool?branch=dev#0123abc")),
]
spans = KrateSpans.synthesize(krates, files, "Cargo.lock")
ctx = CheckCtx(krates=krates, krate_spans=spans, cfg=valid)

for pack in check(ctx):
    for diagnostic in pack:
        print(diagnostic.severity, diagnostic.code, diagnostic.message)
```

What `check` does:

- It returns an empty list at once when both `unknown-registry` and
  `unknown-git` are `allow`.
- Crates without a source (path crates) and sources other than registry and
  git are skipped.
- Source URLs are compared without their query, fragment and trailing
  `.git`. `allow-registry` and `allow-git` entries must match exactly;
  `private` entries allow every URL on the same host under the same path.
  `allow-registry` defaults to the crates.io index.
- A source not allowed by URL may still be allowed by its organisation on
  github.com, gitlab.com or bitbucket.org; otherwise it is reported at the
  configured lint level (`allow` → note, `warn` → warning, `deny` → error).
- With `required-git-spec`, git sources pinned less precisely than required
  are errors. Specs are ordered `any` < `branch` < `tag` < `rev`; a git
  source with no reference, or on the `master` branch, counts as `any`.
- Allowed sources and organisations that no crate used are reported as
  warnings in a final pack, except the crates.io index.

Diagnostic codes are the values of `cratewarden.sources.Code`, such as
`source-not-allowed` and `git-source-underspecified`.

`Config.from_mapping` takes an already-parsed mapping with kebab-case keys
and rejects unknown keys. List entries may be plain strings or `Spanned`
values; only `Spanned` values carry the byte range that labels point to.

## Gathering licenses

```python
from pathlib import Path

from cratewarden.gather import Gatherer, SpdxExpression
from cratewarden.licenses_cfg import Config as LicensesConfig
from cratewarden.licensestore import LicenseStore

store = LicenseStore()
store.add("MIT", Path("texts/MIT.txt").read_text())

lic_cfg, problems = LicensesConfig.from_mapping({
    "allow": ["MIT", "Apache-2.0"],
    "clarify": [{
        "name": "ring",
        "expression": "MIT AND ISC AND OpenSSL",
        "license-files": [{"path": "LICENSE", "hash": 0xbd0eed23}],
    }],
}).validate(cfg_id)

summary = (
    Gatherer()
    .with_store(store)
    .with_confidence_threshold(0.8)
    .gather(krates, files, lic_cfg)
)

for info in summary.nfos:
    if isinstance(info.lic_info, SpdxExpression):
        print(info.krate, info.lic_info.expr, info.lic_info.nfo.source)
    else:
        print(info.krate, "unlicensed")
```

For each crate, in this order:

1. A clarification with the crate's name (and matching `version`
   requirement, if given) is used when every listed license file exists and
   has the given hash. Hashes are `cratewarden.licensepack.license_hash` of
   the file text with line endings normalised to `\n`.
2. Otherwise the crate's `license` field, if it parses as an SPDX
   expression.
3. Otherwise the `LICENSE*` files next to the crate's manifest (plus its
   `license_file`), each matched against the `LicenseStore`. The licenses
   found are joined with `AND`, so every one of them applies.
4. Otherwise the crate is `Unlicensed`, with labels explaining why.

Steps 1 and 3 read the crate's directory, so those crates need a
`manifest_path`. Labels point into a small manifest synthesized for each
crate and added to `Files`. The confidence threshold is clamped to 0.0–1.0.
`summary.nfos` is sorted by crate name and version.

`LicenseStore` compares texts by word-bigram similarity; a store starts
empty and reports a license only at or above its own threshold (0.5 by
default).

`cratewarden.licenses_diags` builds the licenses diagnostics
(`unlicensed`, `unmatched_license_allowance`, `unmatched_license_exception`,
`skipped_private_workspace_crate`) and the `missing_clarification_file`
label.

## SPDX helpers

```python
from cratewarden.spdx import Expression, Licensee

expr = Expression.parse("MIT OR Apache-2.0")
allowed = [Licensee.parse("MIT")]
expr.evaluate(lambda req: any(lic.satisfies(req) for lic in allowed))  # True
```

Parse failures raise `cratewarden.spdx.ParseError`, which carries the
`span` and `reason` of the problem. Identifiers are checked against a
built-in list of common SPDX licenses and exceptions plus `LicenseRef-`
references.

## What it does not do

- There is no command-line tool; it is used as a library.
- It does not read lockfiles, manifests or TOML files. You build the `Krate`
  list and pass configuration as already-parsed mappings.
- Gathering works out each crate's license expression but does not judge
  it: nothing here accepts or rejects licenses against `allow`, `deny`,
  `copyleft` or the OSI/FSF settings.
- No license texts are bundled; the `LicenseStore` holds only what you add.
- There are no advisory or ban checks, although `Check` names them.

## Running the tests

```
pip install -e .[test]
pytest
```