# veo

A web fingerprinting library. Rules are stored in YAML files. Each rule holds
one or more expressions in a small DSL. The engine checks HTTP responses
against the rules and records the technologies it recognises.

## Install

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Rule files

A rule file maps rule names to definitions:

```yaml
# version: 1.0
nginx:
  dsl:
    - "header('Server', 'nginx')"
spring-boot:
  condition: and
  dsl:
    - "contains(body, 'Whitelabel Error Page')"
    - "status_code == 404"
  path: /actuator
shiro:
  dsl:
    - "header('Set-Cookie', 'rememberMe=deleteMe')"
  header: "Cookie: rememberMe=1"
```

- `condition` is `or` by default. With `or`, a rule matches when any one
  expression holds. With `and`, every expression must hold.
- `path` and `header` each take one string or a list of strings. They are
  used only for active probing.
- `veo.rules.RuleManager.load_rules` (and `Engine.load_rules`) takes a single
  file or a directory. For a directory, it loads every `.yaml` file in name
  order. If a file cannot be read, it is skipped with a warning. A later rule
  replaces an earlier rule of the same name.
- Rules from a file whose name contains `sensitive` get the category
  `sensitive` when they do not set one.

### The DSL

- `contains(source, 'a', 'b')`: true if any of the texts occurs in the source.
  The source can be `body`, `header`, `title`, `server` or `url`.
- `contains_all(source, 'a', 'b')`: true if every text occurs in the source.
  It takes the same sources as `contains`.
- `regex(source, 'pattern')` with `body`, `header` or `title` as the source,
  or `regex('pattern')`, which searches the body.
- `title('text')` and `server('text')`.
- `header('Name')` checks that the header is present. `header('Name', 'value')`
  checks that the header's value contains the text.
- `status_code == 200`, and also `!=`, `>`, `<`, `>=` and `<=`.
- `icon('/favicon.ico', '<md5>')`. This fetches the icon through the HTTP
  client and compares the MD5 hex digest of the body. It only works when a
  client is available. Icon hashes and their results are cached per URL.
- `&&` and `||` join expressions. Grouping with parentheses is not supported.

Text comparisons ignore case.

## Usage

```python
from veo.engine import Engine, default_config
from veo.types import HTTPResponse

engine = Engine(default_config())
engine.load_rules("config/fingerprint/")

response = HTTPResponse(
    url="http://example.com/",
    method="GET",
    status_code=200,
    body="<html><title>Example</title></html>",
    response_headers={"Server": ["nginx/1.25"]},
    title="Example",
    server="nginx/1.25",
)
for match in engine.analyze_response_passive(response):
    print(match.rule_name, match.dsl_matched)

print(engine.stats().matched_requests, len(engine.matches()))
```

Responses are filtered before matching:

- A body larger than `max_body_size` (1 MiB by default) is skipped.
- Static file extensions and static content types are skipped only when
  `static_file_filter_enabled` or `content_type_filter_enabled` is set on the
  `EngineConfig`.

Set `output_formatter` on the config to have results handed to a formatter as
they are found. Set `show_snippet` to record the text around each match.

### HTTP clients

An HTTP client is any object with a `make_request(url)` method. That method
returns `(body, status_code)` and raises an exception when the request fails.
If the client also has `make_request_with_headers(url, headers)`, the prober
uses it for rules that carry headers. Both protocols are in `veo.types`
(`HTTPClient` and `HeaderAwareClient`).

### Other modules

- `veo.prober.ActiveProber(engine)`
  - `execute_active_probing` requests every rule path in a thread pool, plus
    `/` for rules with headers, and checks each rule against its own page.
  - `execute_icon_probing` evaluates the `icon()` rules.
  - `execute_404_probing` requests `/404test` and checks all rules against it.
  - `trigger` runs path and 404 probing in a background thread.
- `veo.output.JSONOutputFormatter` prints one compact JSON object per result,
  to standard output or to a given stream. A URL with the same set of
  fingerprints is printed only once.
- `veo.encoding.EncodingDetector` decodes a body using the charset from
  `Content-Type`, a `<meta>` tag or a byte-order mark. GBK-family charsets are
  decoded; other charsets are left as they are.
- `veo.updater.Updater(local_path, remote_url)` reads the `# version: X` line
  of the local and remote rule files. `check_for_updates` compares the two
  versions. `update_rules` downloads the remote file over the local one.
- `veo.reporter`
  - `generate_combined_json` builds an indented JSON report of fingerprint and
    directory-scan pages.
  - `RealtimeCSVReporter` appends one row per response to a CSV file and
    flushes after each row. It can be used as a context manager.
  - `generate_realtime_csv_report` writes the valid pages of a `FilterResult`
    to a CSV file.

## What it does not do

- There is no command-line program. The package is used as a library.
- There is no intercepting proxy and no passive capture of live traffic. You
  build the `HTTPResponse` objects yourself.
- No HTTP client is included for matching or probing. You supply one, as
  described above.
- Client-side redirects (meta refresh or JavaScript) are not followed.
- Results are printed only as JSON lines. There is no coloured console table.