import argparse
import json
import logging
import os
import sys

import sierra_ecg

# === Configuration ===
input_directory = "sierra"  # Change this to your input directory path
output_directory = "output"  # Directory where all JSON files will be saved
file_group = "XML_SIERRA"  # Prefix for output files

def create_output_filename(file_path, input_dir, file_group):
    """Create output filename with subdirectory path included"""
    # Get relative path from input directory
    rel_path = os.path.relpath(file_path, input_dir)

    # Get directory path and filename separately
    dir_path, filename = os.path.split(rel_path)

    # Remove only the .xml extension (case insensitive)
    if filename.lower().endswith('.xml'):
        base_name = filename[:-4]
    else:
        base_name = os.path.splitext(filename)[0]

    # Replace path separators with underscores and create output name
    if dir_path and dir_path != '.':
        dir_str = dir_path.replace('/', '_').replace('\\', '_')
        output_name = f"{file_group}_{dir_str}_{base_name}.json"
    else:
        output_name = f"{file_group}_{base_name}.json"

    return output_name

def sierra_to_json_data(input_file, library=None):
    """
    Read a Sierra ECG XML file and build the common
    {"metadata": ..., "leads": ...} JSON structure, leads in millivolts.
    """
    ecg = sierra_ecg.read_ecg(input_file, library=library)

    ecg_data = {
        "metadata": {
            "source_file": str(input_file),
            "data_format": "Philips Sierra ECG XML",
            "sierra_version": ecg.version,
        },
        "leads": {}
    }

    for lead in ecg.leads:
        ecg_data["leads"][lead.name] = lead.millivolts().tolist()

    # === Add Calculated Metadata ===
    if ecg.leads:
        first_lead = ecg.leads[0]
        total_samples = first_lead.nsamples
        ecg_data["metadata"]["total_samples"] = total_samples
        ecg_data["metadata"]["duration_seconds"] = first_lead.duration / 1000.0
        if first_lead.duration:
            ecg_data["metadata"]["sampling_rate"] = round(total_samples * 1000.0 / first_lead.duration)

    ecg_data["metadata"]["num_leads"] = len(ecg_data["leads"])
    ecg_data["metadata"]["lead_names"] = ecg.lead_names
    ecg_data["metadata"]["lead_durations_ms"] = {lead.name: lead.duration for lead in ecg.leads}
    ecg_data["metadata"]["units"] = "millivolts (mV)"

    # === Add Conversion Parameters ===
    ecg_data["metadata"]["conversion_params"] = {
        "samples_per_millivolt": sierra_ecg.SAMPLES_PER_MILLIVOLT,
        "raw_data_type": "signed 16-bit integer",
        "conversion_formula": f"mV = raw_value / {sierra_ecg.SAMPLES_PER_MILLIVOLT}",
        "final_output_units": "millivolts (mV)"
    }

    return ecg_data

def process_xml_file(file_path, output_dir, input_dir, file_group, verbose=True, library=None):
    """
    Convert one XML file.
    Returns: (success, output_path, error_msg)
    """
    print(f"Processing: {file_path}")

    try:
        parsed_data = sierra_to_json_data(file_path, library=library)
    except sierra_ecg.SierraECGError as e:
        print(f"  ❌ {e}")
        return False, "", str(e)

    if not parsed_data["leads"]:
        msg = f"No lead data found in {file_path}"
        print(f"  ❌ {msg}. Skipping...")
        return False, "", msg

    output_filename = create_output_filename(file_path, input_dir, file_group)
    output_path = os.path.join(output_dir, output_filename)

    try:
        with open(output_path, 'w') as f:
            json.dump(parsed_data, f, indent=2)
    except OSError as e:
        print(f"  ❌ Error writing {output_path}: {e}")
        return False, "", str(e)

    print(f"  ✅ Saved to {output_filename}")
    if verbose:
        metadata = parsed_data["metadata"]
        duration = metadata.get("duration_seconds", "unknown")
        sampling_rate = metadata.get("sampling_rate", "unknown")
        print(f"     📊 {metadata['num_leads']} leads, {duration}s duration, {sampling_rate}Hz sampling rate")
        print(f"     🏷️  Sierra version: {metadata['sierra_version']}")

    return True, output_path, ""

def scan_xml_files(directory):
    """Recursively find all XML files in directory"""
    xml_files = []
    for root, dirs, files in os.walk(directory):
        for file in files:
            if file.lower().endswith('.xml'):
                xml_files.append(os.path.join(root, file))
    return sorted(xml_files)

def batch_process_xml_files(input_dir, output_dir, file_group, verbose=True, library=None):
    """
    Process all Sierra XML files below input_dir.

    Returns:
        dict: Summary of processing results
    """
    if not os.path.isdir(input_dir):
        raise FileNotFoundError(f"Input directory does not exist: {input_dir}")

    os.makedirs(output_dir, exist_ok=True)

    xml_files = scan_xml_files(input_dir)
    if not xml_files:
        print("❌ No XML files found in the specified directory.")
        return {"total": 0, "successful": [], "failed": []}

    print(f"📁 Found {len(xml_files)} XML files to process...")
    print(f"📤 Output directory: {output_dir}")
    print(f"🏷️  File group prefix: {file_group}")
    print(f"🔧 Scale: {sierra_ecg.SAMPLES_PER_MILLIVOLT} units per mV")
    print("-" * 50)

    successful = []
    failed = []

    for file_path in xml_files:
        success, output_path, error_msg = process_xml_file(
            file_path, output_dir, input_dir, file_group, verbose=verbose, library=library
        )
        if success:
            successful.append({"input_file": file_path, "output_file": output_path})
        else:
            failed.append({"input_file": file_path, "error": error_msg})

    print("-" * 50)
    print(f"🎉 Processing complete!")
    print(f"✅ Successfully processed: {len(successful)} files")
    print(f"❌ Failed: {len(failed)} files")
    print(f"📁 All outputs saved in: {output_dir}")

    return {"total": len(xml_files), "successful": successful, "failed": failed}

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Batch convert Philips Sierra ECG XML files to JSON format",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Process all .xml files below a directory
  python batch_sierra_xml_converter.py -i /path/to/xml/files -o output

  # Process single file
  python batch_sierra_xml_converter.py -f single_file.xml

  # Point at a specific libsierraecg build
  SIERRAECG_LIBRARY=/opt/lib/libsierraecg.so python batch_sierra_xml_converter.py -i sierra
        """
    )

    input_group = parser.add_mutually_exclusive_group()
    input_group.add_argument("-i", "--input-dir", default=input_directory,
                             help=f"Directory containing .xml files to process (default: {input_directory})")
    input_group.add_argument("-f", "--file",
                             help="Process a single .xml file")

    parser.add_argument("-o", "--output-dir", default=output_directory,
                        help=f"Output directory for JSON files (default: {output_directory})")
    parser.add_argument("-g", "--file-group", default=file_group,
                        help=f"Prefix for output files (default: {file_group})")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Suppress detailed output")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Show libsierraecg debug logging")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    try:
        if args.file:
            os.makedirs(args.output_dir, exist_ok=True)
            input_dir = os.path.dirname(args.file) or "."
            success, output_path, error_msg = process_xml_file(
                args.file, args.output_dir, input_dir, args.file_group, verbose=not args.quiet
            )
            return 0 if success else 1

        results = batch_process_xml_files(
            args.input_dir, args.output_dir, args.file_group, verbose=not args.quiet
        )
        # Exit with error code if any files failed
        return 1 if results["failed"] else 0

    except KeyboardInterrupt:
        print("\n\nProcessing interrupted by user")
        return 1
    except FileNotFoundError as e:
        print(f"\n❌ Error: {e}")
        return 1

if __name__ == "__main__":
    sys.exit(main())
