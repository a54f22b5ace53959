import unittest
from unittest import mock

from storefront.errors import BackendUnavailable, HostedApiError, NotFoundError
from storefront.fallback import with_fallback


def not_found():
    raise HostedApiError("no rows", code=HostedApiError.NOT_FOUND_CODE)


def hosted_down():
    raise HostedApiError("schema cache", code="PGRST205")


class WithFallbackTests(unittest.TestCase):
    def test_primary_result_skips_fallback(self):
        fallback = mock.Mock(return_value="direct")
        self.assertEqual(with_fallback(lambda: "hosted", fallback, operation="op"), "hosted")
        fallback.assert_not_called()

    def test_not_found_returns_sentinel(self):
        fallback = mock.Mock(return_value="direct")
        self.assertIsNone(with_fallback(not_found, fallback, operation="op", not_found=None))
        fallback.assert_not_called()

    def test_not_found_without_sentinel_uses_fallback(self):
        self.assertEqual(with_fallback(not_found, lambda: "direct", operation="op"), "direct")

    def test_hosted_failure_uses_fallback(self):
        self.assertEqual(with_fallback(hosted_down, lambda: [1, 2], operation="op"), [1, 2])

    def test_unexpected_primary_error_uses_fallback(self):
        def broken():
            raise KeyError("id")

        self.assertEqual(with_fallback(broken, lambda: "direct", operation="op"), "direct")

    def test_domain_errors_propagate_from_primary(self):
        fallback = mock.Mock()

        def missing():
            raise NotFoundError("Cart item with id 1 not found")

        with self.assertRaises(NotFoundError):
            with_fallback(missing, fallback, operation="op")
        fallback.assert_not_called()

    def test_domain_errors_propagate_from_fallback_without_retry(self):
        fallback = mock.Mock(side_effect=NotFoundError("gone"))
        with self.assertRaises(NotFoundError):
            with_fallback(hosted_down, fallback, operation="op")
        self.assertEqual(fallback.call_count, 1)

    def test_fallback_retried_once(self):
        fallback = mock.Mock(side_effect=[ConnectionError("reset"), "direct"])
        self.assertEqual(with_fallback(hosted_down, fallback, operation="op"), "direct")
        self.assertEqual(fallback.call_count, 2)

    def test_exhausted_paths_raise_backend_unavailable(self):
        cause = ConnectionError("refused")
        fallback = mock.Mock(side_effect=[ConnectionError("reset"), cause])
        with self.assertRaises(BackendUnavailable) as ctx:
            with_fallback(hosted_down, fallback, operation="get_all_products")
        self.assertIn("get_all_products", str(ctx.exception))
        self.assertIs(ctx.exception.__cause__, cause)


if __name__ == "__main__":
    unittest.main()
