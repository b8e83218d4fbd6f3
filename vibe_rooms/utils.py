import json
import logging
import re
from typing import Tuple

import commentjson
import yaml
from json_repair import repair_json

from vibe_rooms.errors import MalformedResponseError

logger = logging.getLogger("vibe_rooms")


class Utils():

    def clean_triple_backticks(self, code) -> str:
        pattern = r'```[a-zA-Z]*\n?|```\n?'
        return re.sub(pattern, '', code)

    def split_reasoning_and_json(self, text: str) -> Tuple[str, str]:
        """
        Split a model answer into (free-text reasoning, JSON object text).
        The JSON object spans from the first '{' to the last '}'.
        """
        text = self.clean_triple_backticks(text or "")
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise MalformedResponseError("No JSON found in reasoning service response")
        return text[:start].strip(), text[start:end + 1]

    def load_fault_tolerant_json(self, json_str: str) -> dict:
        """
        Load a JSON-like string, tolerating comments, stray newlines inside
        strings and the usual trailing-comma mistakes.
        Raises MalformedResponseError when nothing parses to an object.
        """
        def sanitize_json_string(input_str):
            def process_string_segment(match):
                content = match.group(1)
                # Escape unescaped backslashes not part of escape sequences
                content = re.sub(r'(?<!\\)\\(?![bfnrtu"\\/])', r'\\\\', content)
                # Replace literal newlines within the string content
                content = re.sub(r'(?<!\\)\n', r'\\n', content)
                return f'"{content}"'

            no_comments = re.sub(r'//.*?$|/\*.*?\*/', '', input_str, flags=re.MULTILINE | re.DOTALL)
            return re.sub(r'(?<!\\)"((?:[^"\\]|\\.)*?)"', process_string_segment, no_comments, flags=re.DOTALL)

        def load_json(candidate):
            err = ""
            try:
                return commentjson.loads(candidate), ""
            except Exception as e:
                err = str(e)
            try:
                data = yaml.safe_load(sanitize_json_string(candidate))
                if isinstance(data, dict):
                    return data, ""
                err += "\n--\nYAML parsing did not produce an object"
            except Exception as e:
                err += "\n--\n" + str(e)
            return None, err

        json_str = self.clean_triple_backticks(json_str or "")
        data, err = load_json(json_str)
        if isinstance(data, dict):
            return data

        repaired = repair_json(json_str)
        data, r_err = load_json(repaired)
        if isinstance(data, dict):
            logger.warning("load_fault_tolerant_json: parsed after json_repair")
            return data

        raise MalformedResponseError(f"JSON parsing failed: {err}\n--\n{r_err}")

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Replaces {KEY} placeholders with the matching kwargs.

        Unlike str.format it only touches the keys passed in kwargs, so literal
        braces in JSON examples inside the template are left alone.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Placeholders left unformatted: {', '.join(missing_keys)}")
        return result

    def dump_json(self, value) -> str:
        return json.dumps(value, indent=2, default=str)
