# yaocore

The core pieces of a spec-driven application framework. Applications describe their pages, importers and APIs in JSON files. At run time they call named *processes*. A process is a handler registered under a dotted name such as `xiang.network.Get` or `yao.system.Exec`.

## Modules

| Module | Purpose |
| --- | --- |
| `yaocore.share` | Spec types (`Render`, `Column`, `Filter`, `Page`, `API`, `AppInfo`, `AppStorage`, `Script`) and helpers for walking and naming application files |
| `yaocore.watch` | `watch(root, callback)` watches a directory tree and calls `callback(op, path)` |
| `yaocore.process` | The process registry (`register_process_handler`, `Process`, `ProcessError`) and the `yao.system.Exec` handler |
| `yaocore.network` | Local IP addresses, free TCP ports, and HTTP requests that return a `Response` |
| `yaocore.page` | Page specs with default `data` / `setting` APIs and the `xiang.page.setting` process |
| `yaocore.schema` | Importer column, option, binding and mapping definitions |
| `yaocore.xlsx` | The `Source` interface and `Xlsx`, a reader for the active sheet of an `.xlsx` workbook |
| `yaocore.importer` | Importers: automatic column mapping, data cleaning, previews and chunked runs |

## Naming application files

A spec's name comes from the file's path relative to its root directory:

```python
from yaocore.share import spec_name, script_name

spec_name("/app/apis", "/app/apis/foo/bar.http.json")   # "foo.bar"
script_name("/app/flows/stat.Query.js")                 # "Query"
```

`walk(root, suffix)` yields `(root, path)` pairs, in lexical order, for each path under `root` that ends with `suffix`. A leading `fs://` or `file://` on `root` is removed first.

## Watching directories

```python
from yaocore.watch import watch

observer = watch("/app/tables", lambda op, path: print(op, path))
...
observer.stop()
observer.join()
```

`op` is one of `create`, `write`, `remove` or `rename`. A move reports `rename` for the old path and then `create` for the new one. Subdirectories are watched as well.

## Processes

Handlers are registered with `register_process_handler(name, handler)`. Names are matched without regard to case. A handler receives a `Process`. It can check how many arguments it has with `validate_arg_nums`, and read them with `args_string`, `args_int` and `args_map`. Problems are raised as `ProcessError`, which carries a `code` that follows HTTP status conventions.

- `Process(name, *args).exec()` runs the handler and turns any failure into a `ProcessError`.
- `Process(name, *args).run()` runs the handler and lets its exceptions through.

```python
from yaocore.process import Process

Process("yao.system.Exec", "echo", "hello").exec()   # "hello"
```

`yao.system.Exec` runs the command it is given with the remaining arguments. It returns the standard output with trailing newlines removed. `system_exec(cmd, *args)` does the same directly.

## Network

Importing `yaocore.network` registers these processes: `xiang.network.ip`, `xiang.network.FreePort`, `xiang.network.Get`, `xiang.network.Post`, `xiang.network.PostJSON`, `xiang.network.Put`, `xiang.network.PutJSON` and `xiang.network.Send`.

The request functions never raise:

- `request_get`
- `request_post`
- `request_post_json`
- `request_put`
- `request_put_json`
- `request_send`

Each returns a `Response` with `status`, `body`, `data` and `headers`. A body whose `Content-Type` is JSON is decoded into `data`. A transport failure gives status `0`, with the error message in `body`. The body sent is JSON when the `content-type` header is JSON, and plain text otherwise. Certificates of `https://` endpoints are not verified. `params` is accepted but is not added to the URL.

`ip()` maps each network interface to an address. `free_port()` returns a TCP port that is free at the moment of the call.

## Pages

`load_page(source, name)` parses a page definition and registers it under `name`. `load_from(directory, prefix)` loads every `.json` file under a directory. `select(name)` returns a loaded page, or raises `PageNotLoaded`.

`Page.setup_apis()` fills in the `data` and `setting` APIs from their defaults, and drops any other API names. The `xiang.page.setting` process takes a page name and a comma-separated list of fields. It returns a single setting when one field is given, a dict when several are given, and all settings otherwise.

## Importer definitions

A column name can address an object key (`user.sex`), an array (`stock[*]`), or both (`skus[*].name`):

```python
from yaocore.schema import column_of

column = column_of({"label": "Goods", "name": "skus[*].name", "match": "goods"})
column.name        # "skus"
column.key         # "name"
column.is_array    # True
column.is_object   # True
column.match       # ["goods"]
```

A column without a label or a name raises `FormatError`.

`option_of` reads import options. It defaults to `chunk_size` 500, and a chunk size is accepted only when it is between 1 and 1999. Preview modes are `auto`, `always` or `never`, and any other value becomes `auto`.

## Spreadsheets

```python
from yaocore.xlsx import open_xlsx, position_to_axis, axis_to_position

position_to_axis(0, 0)     # "A1"
axis_to_position("B3")     # (2, 1): zero-based row and column

with open_xlsx("orders.xlsx") as sheet:
    headers = sheet.columns()
```

`open_xlsx` reads the workbook's active sheet. It raises `XlsxError` when the file cannot be read, when the sheet has more than 100000 rows, or when it has more than 1000 columns. The header is the first non-empty row.

## Importers

`load_from(directory, prefix)` in `yaocore.importer` loads importer definitions into `IMPORTERS`. `select(name)` returns one of them. An `Importer` can do the following:

- map source headers to target columns (`auto_mapping`, `mapping_preview`);
- read and clean rows (`data_get`, `data_clean`, `data_preview`);
- describe preview tables (`data_setting`, `mapping_setting`);
- fingerprint a source's header (`fingerprint`);
- run an import in chunks (`run`).

Cleaning rules and the import's `process` are names of registered processes. A rule returns the updated row as a list to accept it, and any other value marks the row invalid. The import process receives `(columns, rows, run id, page)` and answers `[failed, ignored]`. `run` returns the counts `total`, `success`, `failure` and `ignore`. When an `output` process is set, it returns that process's result instead.

Importing the module registers these processes: `xiang.import.Run`, `xiang.import.Data`, `xiang.import.Setting`, `xiang.import.DataSetting`, `xiang.import.Mapping` and `xiang.import.MappingSetting`. Relative file names given to these processes are resolved against `yaocore.importer.STORAGE_ROOT`.

## What this package does not do

- It has no command-line program and no HTTP server. Processes are called from Python.
- It does not load or run data models, flows, scripts, plugins or query engines. Cleaning rules and import processes must be registered as handlers by the application.
- The default `data` API of a page names the `xiang.page.data` process, but no handler is registered under that name.
- `open_source` supports only `.xlsx` files.