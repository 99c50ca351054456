# test_imports.py
import sys
print("Python path:", sys.path)

try:
    import poml_converter
    print("✅ poml_converter imported successfully")
    print("Module location:", poml_converter.__file__)
except ImportError as e:
    print("❌ Failed to import poml_converter:", e)

try:
    from poml_converter.core.orchestrator import ConversionOrchestrator
    print("✅ ConversionOrchestrator imported successfully")
except ImportError as e:
    print("❌ Failed to import ConversionOrchestrator:", e)
