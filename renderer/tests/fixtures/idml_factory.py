import io
import zipfile

from renderer.app.bridge.package import IDML_MIMETYPE


DESIGNMAP = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<Document xmlns:idPkg="http://ns.adobe.com/AdobeInDesign/idml/1.0/packaging" '
    'DOMVersion="19.0" Self="d">\n'
    '  <idPkg:Story src="Stories/Story_u1.xml"/>\n'
    "</Document>\n"
)


def story_xml(*paragraphs: str) -> str:
    runs = "".join(
        "<ParagraphStyleRange><CharacterStyleRange>"
        f"<Content>{text}</Content>"
        "</CharacterStyleRange></ParagraphStyleRange>"
        for text in paragraphs
    )
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
        '<idPkg:Story xmlns:idPkg="http://ns.adobe.com/AdobeInDesign/idml/1.0/packaging">'
        f'<Story Self="u1">{runs}</Story>'
        "</idPkg:Story>\n"
    )


def idml_package(
    *paragraphs: str,
    mimetype: str = IDML_MIMETYPE,
    include_designmap: bool = True,
    mimetype_first: bool = True,
) -> bytes:
    """
    Smallest archive the bridge accepts as an IDML package.

    The story holds one paragraph per argument, so tokens such as
    ``{{WATTAGE}}`` can be placed in story text.
    """
    entries = []
    if include_designmap:
        entries.append(("designmap.xml", DESIGNMAP))
    entries.append(("Stories/Story_u1.xml", story_xml(*paragraphs)))

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        if mimetype is not None and mimetype_first:
            archive.writestr(mimetype_entry(), mimetype)
        for name, text in entries:
            archive.writestr(name, text, compress_type=zipfile.ZIP_DEFLATED)
        if mimetype is not None and not mimetype_first:
            archive.writestr(mimetype_entry(), mimetype)
    return buffer.getvalue()


def mimetype_entry() -> zipfile.ZipInfo:
    info = zipfile.ZipInfo("mimetype", date_time=(2024, 5, 1, 12, 0, 0))
    info.compress_type = zipfile.ZIP_STORED
    return info
