"""Conversion of shell functions into workflows."""

from .function_converter import FunctionConverter, convert_function, extract_function, list_functions

__all__ = ['FunctionConverter', 'convert_function', 'extract_function', 'list_functions']
