"""
Index representation and query evaluation.

- analyzers: tokenizers, filters, metaphone and sort keys
- schema: field definitions per record type
- store / sqlite_store: the set-oriented storage contract and its backends
- sets: union/intersection into volatile keys
- indices: text, phonetic, number and sort strategies
- query / evaluator: clause trees and their evaluation
- results: windowed, sortable result sets
"""
