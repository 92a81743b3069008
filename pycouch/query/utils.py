from enum import Enum


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"
