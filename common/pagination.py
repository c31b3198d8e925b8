from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Shared pagination for list endpoints.

    A full day of invoices should fit in one page, so `?page_size=` is capped
    well above the default.
    """

    page_size_query_param = "page_size"
    max_page_size = 500
