import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, override_settings
from django.urls import reverse
from django.utils.http import parse_http_date
from drf_spectacular.generators import SchemaGenerator
from rest_framework import status
from rest_framework.test import APIRequestFactory, APISimpleTestCase

from storage.authentication import bearer_token_from_request, parse_bearer_token
from storage.conf import StoreConfig, config_from_mapping, read_config_file
from storage.exceptions import InvalidBody, NoContent, Unauthorized
from storage.services import read_value, write_value
from storage.store import KeyValueStore, get_store, install_store, reset_store

KVSTORE = {"PORT": 8080, "READ_TOKEN": "r", "WRITE_TOKEN": "w"}


@override_settings(KVSTORE=KVSTORE)
class KeyValueApiTests(APISimpleTestCase):
    def setUp(self):
        reset_store()
        self.addCleanup(reset_store)

    def _url(self, key):
        return reverse("storage:kv-detail", args=[key])

    def _write(self, key, body, token="w"):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return self.client.post(self._url(key), data=body, content_type="text/plain")

    def _read(self, key, token="r"):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return self.client.get(self._url(key))

    def test_write_and_read_key(self):
        response = self._write("foo", "bar")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.content, b"")

        response = self._read("foo")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.content, b"bar")
        self.assertTrue(response["Content-Type"].startswith("text/plain"))

    def test_wrong_read_token_returns_401(self):
        self._write("foo", "bar")
        response = self._read("foo", token="wrong")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.content, b"")

    def test_wrong_token_on_missing_key_returns_401(self):
        response = self._read("missing", token="wrong")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_missing_authorization_header_returns_401(self):
        response = self.client.get(self._url("foo"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        response = self.client.post(self._url("foo"), data="bar", content_type="text/plain")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_non_bearer_scheme_returns_401(self):
        self.client.credentials(HTTP_AUTHORIZATION="Basic r")
        response = self.client.get(self._url("foo"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_missing_key_returns_204(self):
        response = self._read("missing")
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(response.content, b"")

    def test_write_with_read_token_is_rejected_and_state_unchanged(self):
        self._write("foo", "bar")

        response = self._write("foo", "other", token="r")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        response = self._read("foo")
        self.assertEqual(response.content, b"bar")

    def test_read_with_write_token_is_rejected(self):
        self._write("foo", "bar")
        response = self._read("foo", token="w")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_overwrite_returns_latest_value(self):
        self._write("foo", "first")
        self._write("foo", "second")

        response = self._read("foo")
        self.assertEqual(response.content, b"second")

    def test_empty_body_stores_empty_value(self):
        self._write("foo", "bar")
        response = self._write("foo", "")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self._read("foo")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.content, b"")

    def test_body_is_stored_verbatim(self):
        body = '  {"not": "parsed"}\néè '
        self._write("doc", body)

        response = self._read("doc")
        self.assertEqual(response.content.decode("utf-8"), body)

    def test_non_utf8_body_returns_400(self):
        self.client.credentials(HTTP_AUTHORIZATION="Bearer w")
        response = self.client.post(
            self._url("foo"),
            data=b"\xff\xfe\xfd",
            content_type="application/octet-stream",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(self._read("foo").status_code, status.HTTP_204_NO_CONTENT)

    def test_non_utf8_body_with_wrong_token_returns_401(self):
        self.client.credentials(HTTP_AUTHORIZATION="Bearer r")
        response = self.client.post(
            self._url("foo"),
            data=b"\xff\xfe\xfd",
            content_type="application/octet-stream",
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_accept_header_is_ignored(self):
        self._write("foo", "bar")
        self.client.credentials(HTTP_AUTHORIZATION="Bearer r")
        response = self.client.get(self._url("foo"), HTTP_ACCEPT="application/json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.content, b"bar")

    def test_read_sets_last_modified_header(self):
        self._write("foo", "bar")
        response = self._read("foo")

        self.assertIn("Last-Modified", response)
        entry = get_store().get("foo")
        self.assertEqual(
            parse_http_date(response["Last-Modified"]),
            int(entry.modified_at.timestamp()),
        )

    @override_settings(KVSTORE={**KVSTORE, "TRACK_MODIFIED": False})
    def test_last_modified_omitted_when_tracking_disabled(self):
        self._write("foo", "bar")
        response = self._read("foo")

        self.assertEqual(response.content, b"bar")
        self.assertNotIn("Last-Modified", response)

    def test_body_larger_than_upload_limit_is_stored(self):
        body = "x" * (3 * 1024 * 1024)
        response = self._write("big", body)
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self._read("big")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.content), len(body))
        self.assertEqual(response.content.decode("utf-8"), body)

    def test_large_body_with_wrong_token_returns_401(self):
        response = self._write("big", "x" * (3 * 1024 * 1024), token="wrong")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(self._read("big").status_code, status.HTTP_204_NO_CONTENT)

    @override_settings(DATA_UPLOAD_MAX_MEMORY_SIZE=16)
    def test_rejected_write_does_not_read_body(self):
        response = self._write("foo", "x" * 1024, token="r")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_unsupported_method_returns_405(self):
        self.client.credentials(HTTP_AUTHORIZATION="Bearer w")
        response = self.client.put(self._url("foo"), data="bar", content_type="text/plain")
        self.assertEqual(response.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)


class HandlerTests(SimpleTestCase):
    def setUp(self):
        self.store = KeyValueStore(read_token="r", write_token="w")

    def test_wrong_tokens_are_unauthorized_whether_or_not_key_exists(self):
        write_value(self.store, "present", "w", b"value")

        for token in (None, "", "R", "w", "r "):
            for key in ("present", "absent"):
                with self.assertRaises(Unauthorized):
                    read_value(self.store, key, token)

        for token in (None, "", "W", "r"):
            with self.assertRaises(Unauthorized):
                write_value(self.store, "present", token, b"other")
        self.assertEqual(read_value(self.store, "present", "r").value, "value")

    def test_body_reader_called_only_after_authorization(self):
        read_body = mock.Mock(return_value=b"bar")

        with self.assertRaises(Unauthorized):
            write_value(self.store, "foo", "r", read_body)
        read_body.assert_not_called()

        write_value(self.store, "foo", "w", read_body)
        read_body.assert_called_once_with()
        self.assertEqual(read_value(self.store, "foo", "r").value, "bar")

    def test_missing_key_raises_no_content(self):
        with self.assertRaises(NoContent):
            read_value(self.store, "never-written", "r")

    def test_read_returns_http_date(self):
        write_value(self.store, "foo", "w", b"bar")
        result = read_value(self.store, "foo", "r")

        self.assertEqual(result.value, "bar")
        self.assertTrue(result.last_modified.endswith(" GMT"))

    def test_read_without_tracking_has_no_last_modified(self):
        store = KeyValueStore(read_token="r", write_token="w", track_modified=False)
        write_value(store, "foo", "w", b"bar")

        self.assertEqual(read_value(store, "foo", "r"), ("bar", None))

    def test_invalid_body_is_not_stored(self):
        with self.assertRaises(InvalidBody):
            write_value(self.store, "foo", "w", b"\xc3\x28")
        self.assertNotIn("foo", self.store)


class KeyValueStoreTests(SimpleTestCase):
    def test_get_missing_returns_none(self):
        store = KeyValueStore(read_token="r", write_token="w")
        self.assertIsNone(store.get("missing"))
        self.assertEqual(len(store), 0)

    def test_put_replaces_entry_wholesale(self):
        times = iter([
            datetime(2024, 1, 1, tzinfo=dt_timezone.utc),
            datetime(2024, 1, 2, tzinfo=dt_timezone.utc),
        ])
        store = KeyValueStore(read_token="r", write_token="w", clock=lambda: next(times))

        store.put("foo", "v1")
        first = store.get("foo")
        store.put("foo", "v2")

        self.assertEqual(first.value, "v1")
        self.assertEqual(first.modified_at, datetime(2024, 1, 1, tzinfo=dt_timezone.utc))
        self.assertEqual(store.get("foo").value, "v2")
        self.assertEqual(store.get("foo").modified_at, datetime(2024, 1, 2, tzinfo=dt_timezone.utc))
        self.assertEqual(len(store), 1)

    def test_timestamp_never_moves_backwards(self):
        start = datetime(2024, 6, 1, 12, 0, tzinfo=dt_timezone.utc)
        times = iter([start, start - timedelta(seconds=30), start + timedelta(seconds=5)])
        store = KeyValueStore(read_token="r", write_token="w", clock=lambda: next(times))

        stamps = []
        for value in ("a", "b", "c"):
            store.put("foo", value)
            stamps.append(store.get("foo").modified_at)

        self.assertEqual(stamps, [start, start, start + timedelta(seconds=5)])
        self.assertEqual(stamps, sorted(stamps))

    def test_untracked_entries_have_no_timestamp(self):
        store = KeyValueStore(read_token="r", write_token="w", track_modified=False)
        store.put("foo", "bar")
        self.assertIsNone(store.get("foo").modified_at)

    def test_concurrent_writers_leave_one_written_value(self):
        store = KeyValueStore(read_token="r", write_token="w")
        values = [f"value-{i}-" + str(i) * 512 for i in range(32)]
        barrier = threading.Barrier(len(values))

        def writer(value):
            barrier.wait()
            for _ in range(50):
                store.put("shared", value)

        threads = [threading.Thread(target=writer, args=(value,)) for value in values]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertIn(store.get("shared").value, values)

    def test_concurrent_reads_see_complete_entries(self):
        store = KeyValueStore(read_token="r", write_token="w")
        store.put("shared", "old")
        seen = []
        stop = threading.Event()

        def reader():
            while not stop.is_set():
                seen.append(store.get("shared").value)

        thread = threading.Thread(target=reader)
        thread.start()
        for i in range(500):
            store.put("shared", "old" if i % 2 else "new")
        stop.set()
        thread.join()

        self.assertTrue(set(seen) <= {"old", "new"})


class StoreRegistryTests(SimpleTestCase):
    def setUp(self):
        reset_store()
        self.addCleanup(reset_store)

    @override_settings(KVSTORE=KVSTORE)
    def test_get_store_is_built_once_from_settings(self):
        store = get_store()
        self.assertIs(get_store(), store)
        self.assertEqual(store.read_token, "r")
        self.assertEqual(store.write_token, "w")
        self.assertTrue(store.track_modified)

    @override_settings(KVSTORE=KVSTORE)
    def test_setting_change_resets_store(self):
        store = get_store()
        with override_settings(KVSTORE={**KVSTORE, "READ_TOKEN": "other"}):
            self.assertEqual(get_store().read_token, "other")
        self.assertIsNot(get_store(), store)
        self.assertEqual(get_store().read_token, "r")

    def test_install_store_replaces_existing(self):
        store = install_store(StoreConfig(port=1, read_token="a", write_token="b"))
        self.assertIs(get_store(), store)


class ConfigTests(SimpleTestCase):
    def _write_ini(self, content):
        fd, path = tempfile.mkstemp(suffix=".ini")
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            fp.write(content)
        self.addCleanup(os.remove, path)
        return path

    def test_reads_ini_file(self):
        path = self._write_ini(
            "[keyvaluestore]\nport = 8080\nread_token = r\nwrite_token = w\n"
        )
        self.assertEqual(
            read_config_file(path),
            StoreConfig(port=8080, read_token="r", write_token="w", track_modified=True),
        )

    def test_reads_track_modified_flag(self):
        path = self._write_ini(
            "[keyvaluestore]\nport = 1\nread_token = r\nwrite_token = w\ntrack_modified = no\n"
        )
        self.assertFalse(read_config_file(path).track_modified)

    def test_missing_file_is_improperly_configured(self):
        with self.assertRaises(ImproperlyConfigured):
            read_config_file(os.path.join(tempfile.gettempdir(), "no-such-kvstore.ini"))

    def test_missing_section_is_improperly_configured(self):
        path = self._write_ini("[other]\nport = 8080\n")
        with self.assertRaises(ImproperlyConfigured):
            read_config_file(path)

    def test_missing_options_are_improperly_configured(self):
        for content in (
            "[keyvaluestore]\nread_token = r\nwrite_token = w\n",
            "[keyvaluestore]\nport = 8080\nwrite_token = w\n",
            "[keyvaluestore]\nport = 8080\nread_token = r\n",
        ):
            path = self._write_ini(content)
            with self.subTest(content=content), self.assertRaises(ImproperlyConfigured):
                read_config_file(path)

    def test_malformed_values_are_improperly_configured(self):
        for content in (
            "[keyvaluestore]\nport = eighty\nread_token = r\nwrite_token = w\n",
            "[keyvaluestore]\nport = 70000\nread_token = r\nwrite_token = w\n",
            "[keyvaluestore]\nport = 8080\nread_token =\nwrite_token = w\n",
            "[keyvaluestore]\nport = 8080\nread_token = r\nwrite_token = w\ntrack_modified = maybe\n",
        ):
            path = self._write_ini(content)
            with self.subTest(content=content), self.assertRaises(ImproperlyConfigured):
                read_config_file(path)

    def test_config_from_mapping(self):
        config = config_from_mapping({**KVSTORE, "TRACK_MODIFIED": False})
        self.assertEqual(config, StoreConfig(8080, "r", "w", False))

        with self.assertRaises(ImproperlyConfigured):
            config_from_mapping({"PORT": 8080, "READ_TOKEN": "r"})
        with self.assertRaises(ImproperlyConfigured):
            config_from_mapping({**KVSTORE, "PORT": "nope"})

    def test_config_from_mapping_parses_flag_strings(self):
        for raw, expected in (("false", False), ("no", False), ("0", False), ("True", True), ("on", True)):
            with self.subTest(raw=raw):
                config = config_from_mapping({**KVSTORE, "TRACK_MODIFIED": raw})
                self.assertIs(config.track_modified, expected)

        for raw in ("maybe", "", 1, None):
            with self.subTest(raw=raw), self.assertRaises(ImproperlyConfigured):
                config_from_mapping({**KVSTORE, "TRACK_MODIFIED": raw})


class BearerTokenTests(SimpleTestCase):
    def test_parse_bearer_token(self):
        self.assertEqual(parse_bearer_token(b"Bearer abc"), "abc")
        self.assertEqual(parse_bearer_token(b"bearer abc"), "abc")
        self.assertEqual(parse_bearer_token(b"  Bearer   abc  "), "abc")
        self.assertIsNone(parse_bearer_token(b""))
        self.assertIsNone(parse_bearer_token(b"Bearer"))
        self.assertIsNone(parse_bearer_token(b"Bearer   "))
        self.assertIsNone(parse_bearer_token(b"Bearer abc def"))
        self.assertIsNone(parse_bearer_token(b"Basic abc"))
        self.assertIsNone(parse_bearer_token(b"Bearer \xff\xfe"))

    def test_bearer_token_from_request(self):
        factory = APIRequestFactory()
        self.assertEqual(
            bearer_token_from_request(factory.get("/foo", HTTP_AUTHORIZATION="Bearer abc")),
            "abc",
        )
        self.assertIsNone(bearer_token_from_request(factory.get("/foo")))


class ServeCommandTests(SimpleTestCase):
    def setUp(self):
        reset_store()
        self.addCleanup(reset_store)

    @override_settings(KVSTORE=None, KVSTORE_CONFIG_FILE="/nonexistent/keyvaluestore.ini")
    def test_invalid_configuration_aborts_startup(self):
        with mock.patch("storage.management.commands.serve.run") as run:
            with self.assertRaises(CommandError):
                call_command("serve")
        run.assert_not_called()

    @override_settings(KVSTORE=KVSTORE)
    def test_serves_on_configured_port_with_threads(self):
        with mock.patch("storage.management.commands.serve.run") as run:
            call_command("serve")

        args, kwargs = run.call_args
        self.assertEqual(args[0], "127.0.0.1")
        self.assertEqual(args[1], 8080)
        self.assertTrue(kwargs["threading"])
        self.assertEqual(get_store().read_token, "r")

    def test_config_option_reads_ini_file(self):
        fd, path = tempfile.mkstemp(suffix=".ini")
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            fp.write("[keyvaluestore]\nport = 9090\nread_token = rr\nwrite_token = ww\n")
        self.addCleanup(os.remove, path)

        with mock.patch("storage.management.commands.serve.run") as run:
            call_command("serve", config=path, addr="0.0.0.0")

        args, _ = run.call_args
        self.assertEqual(args[:2], ("0.0.0.0", 9090))
        self.assertEqual(get_store().write_token, "ww")


class SchemaTests(SimpleTestCase):
    def test_schema_documents_read_and_write(self):
        schema = SchemaGenerator().get_schema(request=None, public=True)

        operations = schema["paths"]["/{key}"]
        self.assertEqual(operations["get"]["operationId"], "read_key")
        self.assertEqual(operations["post"]["operationId"], "write_key")
        self.assertIn("204", operations["get"]["responses"])
        self.assertIn("text/plain", operations["post"]["requestBody"]["content"])
