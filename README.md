# tusstore

A storage backend for resumable uploads that keeps data in S3 or any
S3-compatible object store. It also has a small in-memory locker that guards
concurrent access to an upload.

## What it does

- **`S3Store`** (`tusstore.s3store`) starts a multipart upload for each new
  upload. Next to it, the store writes a `<id>.info` object that holds the
  upload's `FileInfo` (`tusstore.fileinfo`) as JSON.
- **`S3Upload`** (`tusstore.s3upload`) is one upload:
  - `write_chunk(offset, src)` cuts incoming data into parts of the size chosen
    by `S3Store.calc_optimal_part_size`. It stages them in temporary files and
    sends them as multipart parts.
  - A tail smaller than `min_part_size` is kept as a `<id>.part` object. It is
    put in front of the data of the next chunk. The tail is sent as a part
    anyway if it completes the upload.
  - `finish_upload()` completes the multipart upload. If no parts exist, it
    first sends one empty part.
  - `terminate()` aborts the multipart upload and deletes the content object,
    the `.part` object and the `.info` object.
  - `concat_uploads(partials)` builds an upload from finished ones. It uses
    server-side part copies when every piece is at least `min_part_size`.
    Otherwise it downloads the pieces and uploads them joined.
  - `declare_length(length)` sets the size of an upload whose length was
    deferred.
  - `get_reader()` returns the content of a finished upload.
- **`MemoryLocker`** (`tusstore.memorylocker`) hands out exclusive locks that
  are keyed by upload id and live only in the process.

The store talks to S3 through an object that follows the `S3API` protocol in
`tusstore.s3api`. Its methods have snake_case names such as `put_object`,
`list_parts`, `upload_part` and `get_object`. They take the request fields as
keyword arguments (`Bucket=`, `Key=`, `UploadId=` and so on) and return
dictionaries of response fields. Failures reported by the service must be
raised as `tusstore.s3api.AwsError(code, message)`. The store tells apart
codes such as `NoSuchKey` and `NoSuchUpload` through this exception. A client
that raises other exceptions needs a thin adapter. A test fake can be plugged
in directly.

## Installation

```
pip install tusstore
```

The package has no runtime dependencies.

## Locking

```python
from tusstore.memorylocker import MemoryLocker
from tusstore.errors import FileLockedError

locker = MemoryLocker()
lock = locker.new_lock("upload-1")
lock.lock()
try:
    locker.new_lock("upload-1").lock()
except FileLockedError:
    print("already locked")
lock.unlock()

with locker.new_lock("upload-2"):
    ...  # held inside the block, released afterwards
```

Unlocking a lock that is not held does nothing.

## Storing uploads

```python
from tusstore.s3store import S3Store
from tusstore.fileinfo import FileInfo

store = S3Store("my-bucket", service)   # service follows S3API
store.object_prefix = "uploads"

upload = store.new_upload(FileInfo(size=1024, meta_data={"filename": "a.txt"}))
with open("a.txt", "rb") as src:
    written = upload.write_chunk(0, src)
upload.finish_upload()
```

When `FileInfo.id` is empty, a random id is generated. The resulting upload
id has the form `<object id>+<multipart upload id>`. Metadata is passed to the
multipart upload with every character that is not valid in an HTTP header
replaced by `?`. The `.info` object keeps it unchanged.

A later request looks the upload up again by its id. `get_info` then reads
the `.info` object and works out the offset from the uploaded parts:

```python
upload = store.get_upload(upload.id)
info = upload.get_info()
print(info.id, info.offset, info.size)
reader = upload.get_reader()
```

### Settings

`S3Store` is a dataclass. Its fields can be set at construction or afterwards:

| Field | Default |
|-------|---------|
| `object_prefix` | `""` |
| `metadata_object_prefix` | `""` (falls back to `object_prefix`) |
| `min_part_size` | 5 MiB |
| `preferred_part_size` | 50 MiB |
| `max_part_size` | 5 GiB |
| `max_multipart_parts` | 10000 |
| `max_object_size` | 5 TiB |
| `temporary_directory` | `""` (system default) |
| `disable_content_hashes` | `False` |

When `disable_content_hashes` is set, parts are sent with a plain HTTP `PUT`
to a URL that the service's `generate_presigned_url` method produces. A
service without that method makes the upload fail. The `max_buffered_parts`
field is accepted but not used.

## Errors

Failures are raised as exceptions from `tusstore.errors` and elsewhere:

| Exception | Raised when |
|-----------|-------------|
| `NotFoundError` | The upload does not exist. |
| `FileLockedError` | A lock is already held. |
| `HTTPError` | A failure carries an HTTP status, for example reading an unfinished upload (400). |
| `MultiError` | Several S3 calls failed together during termination or concatenation. |
| `ValueError` | An upload exceeds `max_object_size`, or no part size within `max_part_size` fits it. |
| `RuntimeError` | Creating the multipart upload or the info object failed, or a presigned upload was rejected. |

Other errors raised by the service reach the caller unchanged.

## What it does not do

The package is a storage layer only. It has no HTTP server or request handler
for the upload protocol, no command-line tool, no metrics export, and no S3
client of its own. Any HTTP layer, and the service object, must come from
the application.

## Tests

```
pip install -e ".[test]"
pytest
```